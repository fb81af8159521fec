import random

import pytest

from swipr_rec.collaborative import PeerSimilarityIndex
from swipr_rec.recommender import HybridScorer
from swipr_rec.selector import COLD_START, PERSONALIZED, CandidateSelector, diversify
from swipr_rec.session import SwipeSession


def _selector(catalog, store, **kwargs):
    return CandidateSelector(catalog, HybridScorer(store), PeerSimilarityIndex(store), **kwargs)


def _session(swipes, **profile):
    session = SwipeSession("me")
    session.stats.total_swipes = swipes
    for key, value in profile.items():
        setattr(session.profile, key, value)
    return session


@pytest.mark.asyncio
async def test_nine_swipes_serves_curated_pool_only(make_item, peer_store, fake_catalog_factory):
    curated = [make_item(i) for i in range(1, 13)]
    catalog = fake_catalog_factory(pages={1: [make_item(100)]}, curated=curated)

    batch = await _selector(catalog, peer_store).get_recommendations(_session(9), exclude_ids={2})

    assert batch.mode == COLD_START
    assert [item.id for item in batch.items] == [1, 3, 4, 5, 6, 7, 8, 9, 10, 11]
    assert batch.scores == {}
    assert catalog.discover_calls == []


@pytest.mark.asyncio
async def test_ten_swipes_switches_to_hybrid_ranking(make_item, peer_store, fake_catalog_factory):
    catalog = fake_catalog_factory(
        pages={1: [make_item(1, genres=("Drama",)), make_item(2, genres=("Action",))]},
        curated=[make_item(50)],
    )
    session = _session(10, liked_genres=["Action"])

    batch = await _selector(catalog, peer_store).get_recommendations(session)

    assert batch.mode == PERSONALIZED
    assert [item.id for item in batch.items] == [2, 1]
    assert batch.scores[2].total > batch.scores[1].total
    assert catalog.curated_calls == 0


@pytest.mark.asyncio
async def test_seen_and_posterless_items_are_filtered(make_item, peer_store, fake_catalog_factory):
    catalog = fake_catalog_factory(pages={1: [
        make_item(1), make_item(2, poster_path=None), make_item(3), make_item(4),
    ]})
    session = _session(10)
    session.record_swipe(make_item(3), "pass")

    batch = await _selector(catalog, peer_store).get_recommendations(session, exclude_ids=[4])

    assert {item.id for item in batch.items} == {1}


@pytest.mark.asyncio
async def test_retries_next_page_when_nothing_new(make_item, peer_store, fake_catalog_factory):
    catalog = fake_catalog_factory(pages={1: [make_item(1)], 2: [make_item(2)], 3: [make_item(3)]}, total_pages=5)

    batch = await _selector(catalog, peer_store).get_recommendations(_session(10), exclude_ids={1, 2})

    assert catalog.discover_calls == [1, 2, 3]
    assert batch.page == 3
    assert [item.id for item in batch.items] == [3]
    assert batch.exhausted is False


@pytest.mark.asyncio
async def test_exhausted_after_max_page_retries(make_item, peer_store, fake_catalog_factory):
    catalog = fake_catalog_factory(pages={}, total_pages=50)

    batch = await _selector(catalog, peer_store, max_page_retries=3).get_recommendations(_session(10))

    assert catalog.discover_calls == [1, 2, 3, 4]
    assert batch.items == []
    assert batch.exhausted is True


@pytest.mark.asyncio
async def test_last_page_stops_retrying(make_item, peer_store, fake_catalog_factory):
    catalog = fake_catalog_factory(pages={1: [make_item(1)]}, total_pages=1)

    batch = await _selector(catalog, peer_store).get_recommendations(_session(10), exclude_ids={1})

    assert catalog.discover_calls == [1]
    assert batch.exhausted is True


@pytest.mark.asyncio
async def test_catalog_failure_is_not_exhaustion(peer_store, fake_catalog_factory):
    catalog = fake_catalog_factory(error="ConnectError: boom")

    cold = await _selector(catalog, peer_store).get_recommendations(_session(0))
    warm = await _selector(catalog, peer_store).get_recommendations(_session(10))

    for batch in (cold, warm):
        assert batch.items == []
        assert batch.exhausted is False
        assert batch.error == "ConnectError: boom"


@pytest.mark.asyncio
async def test_peer_store_outage_still_ranks_by_content(make_item, failing_peer_store, fake_catalog_factory):
    catalog = fake_catalog_factory(pages={1: [make_item(1, genres=("Drama",)), make_item(2, genres=("Action",))]})
    session = _session(10, liked_genres=["Action"])
    session.record_swipe(make_item(40, genres=("Action",)), "like")

    batch = await _selector(catalog, failing_peer_store).get_recommendations(session)

    assert [item.id for item in batch.items] == [2, 1]
    assert batch.scores[1].user_based_score == 0


@pytest.mark.asyncio
async def test_collaborative_signal_lifts_peer_favorites(make_item, peer_store, fake_catalog_factory):
    for content_id in (1, 2, 3):
        peer_store.add("me", content_id, "like")
        peer_store.add("buddy", content_id, "like")
    peer_store.add("buddy", 20, "like")
    catalog = fake_catalog_factory(pages={1: [make_item(10), make_item(20), make_item(30)]})
    session = _session(10)

    batch = await _selector(catalog, peer_store).get_recommendations(session)

    assert batch.items[0].id == 20
    assert batch.scores[20].user_based_score == 1.0


@pytest.mark.asyncio
async def test_shuffle_uses_injected_random(make_item, peer_store, fake_catalog_factory):
    items = [make_item(i, genres=(f"G{i}",)) for i in range(1, 9)]
    catalog = fake_catalog_factory(pages={1: items})

    unshuffled = await _selector(catalog, peer_store).get_recommendations(_session(10))
    shuffled = await _selector(catalog, peer_store, shuffle=True, rng=random.Random(7)).get_recommendations(_session(10))

    expected = list(unshuffled.items)
    random.Random(7).shuffle(expected)
    assert [i.id for i in shuffled.items] == [i.id for i in expected]


def test_diversify_caps_primary_genre(make_item):
    ranked = [make_item(i, genres=("Drama", "Action")) for i in range(5)] + [make_item(9, genres=("Comedy",))]

    result = diversify(ranked)

    assert [item.id for item in result] == [0, 1, 2, 9]


def test_diversify_caps_language(make_item):
    ranked = [make_item(i, genres=(f"G{i}",), language="fr") for i in range(7)]
    ranked.append(make_item(99, genres=("Other",), language="en"))

    result = diversify(ranked)

    assert [item.id for item in result] == [0, 1, 2, 3, 4, 99]


def test_diversify_stops_at_limit(make_item):
    ranked = [make_item(i, genres=(f"G{i}",), language=f"l{i}") for i in range(30)]

    assert len(diversify(ranked)) == 20
    assert len(diversify(ranked, limit=5)) == 5


def test_diversify_of_nothing_is_nothing():
    assert diversify([]) == []
