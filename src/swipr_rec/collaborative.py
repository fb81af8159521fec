"""
Cross-user signal: the shared peer action store and peer similarity.

Similarity between the user and a peer is measured only over content both have
acted on:

    similarity = agreements / common + MUTUAL_LIKE_BONUS * mutual_likes   (capped at 1)

and is zero until they share MIN_COMMON_CONTENT items. Similarity maps are
cached per user for SIMILARITY_CACHE_TTL seconds; raw peer actions are never
cached past one ranking pass.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol

import numpy as np

from .config import (
    DEFAULT_MIN_SIMILARITY,
    MIN_COMMON_CONTENT,
    MUTUAL_LIKE_BONUS,
    SIMILARITY_CACHE_TTL,
)
from .database import (
    insert_peer_action,
    load_actions_by_user,
    load_actions_for_content,
)
from .models import Action
from .utils import retry_with_backoff

logger = logging.getLogger(__name__)

# Non-zero codes so "no action" can be 0 in the overlap matrix
_ACTION_CODES = {
    Action.LIKE: 1,
    Action.PASS: 2,
    Action.SAVE_FOR_LATER: 3,
}
_LIKE = _ACTION_CODES[Action.LIKE]


class PeerStoreError(Exception):
    """The shared peer action store could not be read or written."""


@dataclass(frozen=True)
class PeerAction:
    peer_id: str
    content_id: int
    action: Action


class PeerSignalStore(Protocol):
    async def actions_for(self, content_id: int) -> list[PeerAction]: ...

    async def actions_by(self, peer_id: str) -> list[PeerAction]: ...

    async def record_action(self, user_id: str, content_id: int, action: Action) -> None: ...


def _rows_to_actions(rows: Iterable[dict]) -> list[PeerAction]:
    actions = []
    for row in rows:
        try:
            actions.append(PeerAction(row['user_id'], int(row['content_id']), Action.parse(row['action'])))
        except ValueError:
            logger.debug(f"Ignoring peer action with unknown type: {row.get('action')!r}")
    return actions


class SqlitePeerStore:
    """PeerSignalStore backed by the local `peer_actions` table."""

    async def actions_for(self, content_id: int) -> list[PeerAction]:
        try:
            return _rows_to_actions(load_actions_for_content(content_id))
        except sqlite3.Error as e:
            raise PeerStoreError(f"Could not load actions for content {content_id}: {e}") from e

    async def actions_by(self, peer_id: str) -> list[PeerAction]:
        try:
            return _rows_to_actions(load_actions_by_user(peer_id))
        except sqlite3.Error as e:
            raise PeerStoreError(f"Could not load actions by {peer_id}: {e}") from e

    async def record_action(self, user_id: str, content_id: int, action: Action) -> None:
        try:
            self._insert(user_id, content_id, Action.parse(action).value)
        except sqlite3.Error as e:
            raise PeerStoreError(f"Could not record action for {user_id}: {e}") from e

    @staticmethod
    @retry_with_backoff(max_retries=3, initial_delay=0.1, exceptions=(sqlite3.OperationalError,))
    def _insert(user_id: str, content_id: int, action: str) -> None:
        insert_peer_action(user_id, content_id, action)


class SimilarityCache:
    """
    Per-user similarity maps with a fixed time-to-live.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, ttl: float = SIMILARITY_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, dict[str, float]]] = {}

    def get(self, user_id: str) -> dict[str, float] | None:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        stored_at, similarities = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[user_id]
            return None
        return dict(similarities)

    def put(self, user_id: str, similarities: dict[str, float]) -> None:
        self._entries[user_id] = (self._clock(), dict(similarities))

    def invalidate(self, user_id: str | None = None) -> None:
        """Drop one user's entry, or everything when user_id is None."""
        if user_id is None:
            self._entries.clear()
        else:
            self._entries.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class PeerMatch:
    peer_id: str
    common_count: int
    agreements: int
    mutual_likes: int
    similarity: float


class PeerSimilarityIndex:
    def __init__(self, store: PeerSignalStore, cache: SimilarityCache | None = None):
        self.store = store
        self.cache = cache if cache is not None else SimilarityCache()

    async def find_similar_users(
        self,
        user_id: str,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ) -> dict[str, float]:
        """
        Map of peer id to similarity for peers at or above min_similarity.

        A store failure yields an empty map, which is not cached.
        """
        similarities = self.cache.get(user_id)
        if similarities is None:
            try:
                matches = await self._compute_matches(user_id)
            except PeerStoreError as e:
                logger.warning(f"Peer similarity unavailable for {user_id}: {e}")
                return {}
            similarities = {m.peer_id: m.similarity for m in matches if m.similarity > 0}
            self.cache.put(user_id, similarities)
            logger.debug(f"Computed similarity for {user_id}: {len(similarities)} peers with overlap")

        return {peer: sim for peer, sim in similarities.items() if sim >= min_similarity}

    async def describe_matches(self, user_id: str) -> list[PeerMatch]:
        """Full overlap report for every peer, best match first. Bypasses the cache."""
        matches = await self._compute_matches(user_id)
        return sorted(matches, key=lambda m: (-m.similarity, -m.common_count, m.peer_id))

    async def _compute_matches(self, user_id: str) -> list[PeerMatch]:
        own = {a.content_id: a.action for a in await self.store.actions_by(user_id)}
        if not own:
            return []

        content_ids = list(own)
        per_content = await asyncio.gather(*(self.store.actions_for(cid) for cid in content_ids))

        peers = sorted({a.peer_id for actions in per_content for a in actions if a.peer_id != user_id})
        if not peers:
            return []
        peer_index = {peer: i for i, peer in enumerate(peers)}

        # peers x user-content matrix of action codes; later rows overwrite earlier ones
        codes = np.zeros((len(peers), len(content_ids)), dtype=np.int8)
        for j, actions in enumerate(per_content):
            for a in actions:
                if a.peer_id != user_id:
                    codes[peer_index[a.peer_id], j] = _ACTION_CODES[a.action]
        user_codes = np.array([_ACTION_CODES[own[cid]] for cid in content_ids], dtype=np.int8)

        acted = codes != 0
        common = acted.sum(axis=1)
        agreements = (acted & (codes == user_codes)).sum(axis=1)
        mutual_likes = ((codes == _LIKE) & (user_codes == _LIKE)).sum(axis=1)

        raw = agreements / np.maximum(common, 1) + MUTUAL_LIKE_BONUS * mutual_likes
        similarity = np.where(common >= MIN_COMMON_CONTENT, np.minimum(raw, 1.0), 0.0)

        return [
            PeerMatch(
                peer_id=peer,
                common_count=int(common[i]),
                agreements=int(agreements[i]),
                mutual_likes=int(mutual_likes[i]),
                similarity=float(similarity[i]),
            )
            for peer, i in peer_index.items()
        ]
