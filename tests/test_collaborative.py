import pytest

from swipr_rec.collaborative import (
    PeerSimilarityIndex,
    PeerStoreError,
    SimilarityCache,
    SqlitePeerStore,
)
from swipr_rec.models import Action


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _shared_history(store, peer, actions):
    for content_id, action in actions.items():
        store.add(peer, content_id, action)


@pytest.mark.asyncio
async def test_similarity_counts_agreements_and_mutual_likes(peer_store):
    _shared_history(peer_store, "me", {1: "like", 2: "like", 3: "pass", 4: "like"})
    _shared_history(peer_store, "twin", {1: "like", 2: "like", 3: "pass", 4: "pass"})
    _shared_history(peer_store, "opposite", {1: "pass", 2: "pass", 3: "like"})

    index = PeerSimilarityIndex(peer_store)
    matches = {m.peer_id: m for m in await index.describe_matches("me")}

    # twin: 3/4 agree + 0.1 * 2 mutual likes
    assert matches["twin"].similarity == pytest.approx(0.95)
    assert matches["twin"].common_count == 4
    assert matches["twin"].mutual_likes == 2
    assert matches["opposite"].similarity == 0.0

    similar = await index.find_similar_users("me")
    assert similar == {"twin": pytest.approx(0.95)}


@pytest.mark.asyncio
async def test_similarity_needs_three_common_items(peer_store):
    _shared_history(peer_store, "me", {1: "like", 2: "like"})
    _shared_history(peer_store, "peer", {1: "like", 2: "like"})

    index = PeerSimilarityIndex(peer_store)

    assert await index.find_similar_users("me", min_similarity=0.0) == {}


@pytest.mark.asyncio
async def test_similarity_is_capped_at_one(peer_store):
    likes = {i: "like" for i in range(1, 8)}
    _shared_history(peer_store, "me", likes)
    _shared_history(peer_store, "peer", likes)

    index = PeerSimilarityIndex(peer_store)

    assert (await index.find_similar_users("me"))["peer"] == 1.0


@pytest.mark.asyncio
async def test_latest_action_per_content_wins(peer_store):
    _shared_history(peer_store, "me", {1: "like", 2: "like", 3: "like"})
    _shared_history(peer_store, "peer", {1: "pass", 2: "like", 3: "like"})
    peer_store.add("peer", 1, "like")

    index = PeerSimilarityIndex(peer_store)
    match = {m.peer_id: m for m in await index.describe_matches("me")}["peer"]

    assert match.agreements == 3
    assert match.common_count == 3


@pytest.mark.asyncio
async def test_results_are_cached_until_ttl_expires(peer_store):
    _shared_history(peer_store, "me", {1: "like", 2: "like", 3: "like"})
    _shared_history(peer_store, "peer", {1: "like", 2: "like", 3: "like"})
    clock = FakeClock()
    index = PeerSimilarityIndex(peer_store, SimilarityCache(ttl=300, clock=clock))

    await index.find_similar_users("me")
    reads = peer_store.reads
    await index.find_similar_users("me", min_similarity=0.9)
    assert peer_store.reads == reads

    clock.now += 300
    await index.find_similar_users("me")
    assert peer_store.reads > reads


@pytest.mark.asyncio
async def test_invalidate_forces_recompute(peer_store):
    _shared_history(peer_store, "me", {1: "like", 2: "like", 3: "like"})
    cache = SimilarityCache(clock=FakeClock())
    index = PeerSimilarityIndex(peer_store, cache)

    assert await index.find_similar_users("me") == {}
    _shared_history(peer_store, "late", {1: "like", 2: "like", 3: "like"})
    assert await index.find_similar_users("me") == {}

    cache.invalidate("me")
    assert "late" in await index.find_similar_users("me")

    cache.invalidate()
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_store_failure_returns_empty_and_is_not_cached(failing_peer_store):
    cache = SimilarityCache(clock=FakeClock())
    index = PeerSimilarityIndex(failing_peer_store, cache)

    assert await index.find_similar_users("me") == {}
    assert len(cache) == 0

    await index.find_similar_users("me")
    assert failing_peer_store.attempts == 2


@pytest.mark.asyncio
async def test_sqlite_store_keeps_latest_action_per_user(fresh_db):
    store = SqlitePeerStore()
    await store.record_action("alice", 10, Action.PASS)
    await store.record_action("alice", 10, "like")
    await store.record_action("bob", 10, "save_for_later")
    await store.record_action("bob", 11, "pass")

    on_ten = {a.peer_id: a.action for a in await store.actions_for(10)}
    by_bob = {a.content_id: a.action for a in await store.actions_by("bob")}

    assert on_ten == {"alice": Action.LIKE, "bob": Action.SAVE_FOR_LATER}
    assert by_bob == {10: Action.SAVE_FOR_LATER, 11: Action.PASS}


@pytest.mark.asyncio
async def test_sqlite_store_wraps_database_errors(fresh_db):
    with fresh_db.get_db() as conn:
        conn.execute("DROP TABLE peer_actions")

    store = SqlitePeerStore()
    with pytest.raises(PeerStoreError):
        await store.actions_for(1)
