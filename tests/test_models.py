import pytest

from swipr_rec.models import (
    Action,
    ContentItem,
    DiscoveryPreferences,
    SessionStats,
    SwipeAction,
    TasteProfile,
    Watchlist,
)


def test_content_item_derives_year_decade_and_primary_genre(make_item):
    item = make_item(1, genres=("Sci-Fi", "Drama", "Sci-Fi"), year=1999)

    assert item.genres == ("Sci-Fi", "Drama")
    assert item.primary_genre == "Sci-Fi"
    assert item.year == 1999
    assert item.decade == 1990


def test_content_item_without_release_date_has_no_year():
    item = ContentItem(id=5, title="Undated")

    assert item.year is None
    assert item.decade is None
    assert item.primary_genre is None


def test_content_item_identity_is_id(make_item):
    a = make_item(7, title="One")
    b = make_item(7, title="Other")

    assert a == b
    assert len({a, b}) == 1


def test_content_item_from_dict_tolerates_missing_fields():
    item = ContentItem.from_dict({"id": "42", "rating": "bad", "genres": "Drama"})

    assert item.id == 42
    assert item.rating == 0.0
    assert item.genres == ()
    assert item.content_type == "movie"


def test_action_parse_accepts_aliases():
    assert Action.parse("like") is Action.LIKE
    assert Action.parse("save") is Action.SAVE_FOR_LATER
    assert Action.parse("unwatched") is Action.SAVE_FOR_LATER
    assert Action.parse(Action.PASS) is Action.PASS
    with pytest.raises(ValueError):
        Action.parse("superlike")


def test_swipe_action_snapshot_survives_serialization(make_item):
    item = make_item(3, genres=("Horror",), year=1984, rating=7.5, title="Night")
    entry = SwipeAction.from_item(item, Action.PASS)

    restored = SwipeAction.from_dict(entry.to_dict())

    assert restored.content_id == 3
    assert restored.action is Action.PASS
    assert restored.genres == ("Horror",)
    assert restored.year == 1984
    minimal = restored.to_item()
    assert minimal.id == 3 and minimal.title == "Night" and minimal.year == 1984


def test_taste_profile_from_dict_resolves_genre_overlap():
    profile = TasteProfile.from_dict({
        "liked_genres": ["Drama", "Comedy"],
        "disliked_genres": ["Comedy", "Horror"],
    })

    assert profile.liked_genres == ["Drama", "Comedy"]
    assert profile.disliked_genres == ["Horror"]
    assert profile.average_rating_preference == 7.0


def test_session_stats_revert_never_goes_negative():
    stats = SessionStats()
    stats.record(Action.LIKE)
    stats.revert(Action.LIKE)
    stats.revert(Action.PASS)

    assert stats.to_dict() == {"total_swipes": 0, "likes_count": 0, "dislikes_count": 0, "saved_count": 0}


def test_session_stats_reads_legacy_unwatched_count():
    assert SessionStats.from_dict({"unwatched_count": 4}).saved_count == 4


def test_watchlist_is_idempotent_and_most_recent_first(make_item):
    watchlist = Watchlist()
    first, second = make_item(1), make_item(2)

    assert watchlist.add(first) is True
    assert watchlist.add(second) is True
    assert watchlist.add(make_item(1, title="Again")) is False

    assert [item.id for item in watchlist.list()] == [2, 1]
    assert 1 in watchlist
    assert watchlist.remove(99) is False
    assert watchlist.remove(1) is True
    assert [item.id for item in watchlist.list()] == [2]


def test_watchlist_from_list_skips_malformed_entries():
    watchlist = Watchlist.from_list([{"id": 1, "title": "Ok"}, {"title": "no id"}, "junk"])

    assert [item.id for item in watchlist] == [1]


def test_discovery_preferences_defaults_and_validation():
    prefs = DiscoveryPreferences.from_dict({"content_type": "podcasts", "year_range": [1990, 2000]})

    assert prefs.languages == ["en"]
    assert prefs.content_type == "movies"
    assert prefs.year_range == (1990, 2000)
    with pytest.raises(ValueError):
        DiscoveryPreferences(content_type="podcasts")
