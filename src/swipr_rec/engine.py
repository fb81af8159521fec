"""
Per-user orchestration of swipes, the pending queue and refills.

SwipeEngine ties one SwipeSession to the selector and the peer store. Each
refill is tagged with a generation number; a refill that completes after a
newer one started (or after a reset) is dropped instead of applied.
"""
import logging
from collections import deque

from .collaborative import PeerSignalStore, PeerSimilarityIndex, PeerStoreError
from .config import QUEUE_LOW_WATERMARK
from .models import Action, ContentItem, SwipeAction
from .recommender import HybridScore
from .selector import COLD_START, CandidateSelector, PERSONALIZED
from .session import SwipeSession

logger = logging.getLogger(__name__)


class SwipeEngine:
    def __init__(
        self,
        session: SwipeSession,
        selector: CandidateSelector,
        peer_store: PeerSignalStore,
        similarity_index: PeerSimilarityIndex,
        low_watermark: int = QUEUE_LOW_WATERMARK,
    ):
        self.session = session
        self.selector = selector
        self.peer_store = peer_store
        self.similarity_index = similarity_index
        self.low_watermark = low_watermark

        self.queue: deque[ContentItem] = deque()
        self.scores: dict[int, HybridScore] = {}
        self.exhausted = False
        self.last_error: str | None = None
        self._page = 1
        self._mode: str | None = None
        self._generation = 0

    @property
    def user_id(self) -> str:
        return self.session.user_id

    def next_item(self) -> ContentItem | None:
        return self.queue[0] if self.queue else None

    async def refill(self) -> bool:
        """
        Fetch the next batch into the queue.

        Returns False when the result was discarded because a newer refill or
        a reset happened while this one was in flight.
        """
        self._generation += 1
        generation = self._generation

        queued = {item.id for item in self.queue}
        batch = await self.selector.get_recommendations(self.session, exclude_ids=queued, page=self._page)

        if generation != self._generation:
            logger.debug(f"Discarding stale refill {generation} for {self.user_id} (current {self._generation})")
            return False

        self.last_error = batch.error
        self.exhausted = batch.exhausted
        self._mode = batch.mode
        for item in batch.items:
            if item.id not in queued:
                self.queue.append(item)
                queued.add(item.id)
        self.scores.update(batch.scores)
        if batch.mode == PERSONALIZED and batch.items:
            self._page = batch.page + 1
        return True

    async def swipe(self, item: ContentItem, action: Action | str) -> SwipeAction:
        """Record a swipe locally, share it with peers, and top up the queue."""
        entry = self.session.record_swipe(item, action)
        self.queue = deque(queued for queued in self.queue if queued.id != item.id)
        self.scores.pop(item.id, None)

        try:
            await self.peer_store.record_action(self.user_id, item.id, entry.action)
        except PeerStoreError as e:
            logger.warning(f"Could not share swipe on {item.id}: {e}")

        if self.exhausted and self._mode == COLD_START and not self.session.is_cold_start:
            # Curated pool ran dry but the session has moved on to catalog discovery
            self.exhausted = False

        if len(self.queue) <= self.low_watermark and not self.exhausted:
            await self.refill()
        return entry

    def undo(self) -> ContentItem | None:
        """Revert the last swipe and put its item back at the front of the queue."""
        item = self.session.undo_last()
        if item is not None:
            self.queue = deque(queued for queued in self.queue if queued.id != item.id)
            self.queue.appendleft(item)
            self.exhausted = False
        return item

    def reset(self) -> None:
        self._generation += 1
        self.session.reset()
        self.queue.clear()
        self.scores.clear()
        self.exhausted = False
        self.last_error = None
        self._mode = None
        self._page = 1
        self.similarity_index.cache.invalidate(self.user_id)
        logger.info(f"Reset engine state for {self.user_id}")
