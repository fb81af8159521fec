"""
Candidate selection: fetch, filter, score, rank and diversify.

New users (fewer than COLD_START_SWIPES swipes) see the curated pool as is.
After that each batch is pulled from catalog discovery, scored with the
hybrid scorer and passed through a counting diversity filter.
"""
from __future__ import annotations

import asyncio
import logging
import random
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from .catalog import CatalogGateway, QualityFloor
from .collaborative import PeerSimilarityIndex, PeerStoreError
from .config import (
    COLD_START_BATCH_SIZE,
    RECOMMENDATION_BATCH_SIZE,
    MAX_PAGE_RETRIES,
    DIVERSITY_MAX_PER_GENRE,
    DIVERSITY_MAX_PER_LANGUAGE,
    ITEM_ITEM_MAX_LIKED,
)
from .models import ContentItem
from .recommender import HybridScore, HybridScorer
from .session import SwipeSession

logger = logging.getLogger(__name__)

COLD_START = 'cold_start'
PERSONALIZED = 'personalized'


@dataclass
class RecommendationBatch:
    items: list[ContentItem] = field(default_factory=list)
    mode: str = PERSONALIZED
    page: int = 1
    exhausted: bool = False
    scores: dict[int, HybridScore] = field(default_factory=dict)
    error: str | None = None


def diversify(
    ranked: list[ContentItem],
    limit: int = RECOMMENDATION_BATCH_SIZE,
    max_per_genre: int = DIVERSITY_MAX_PER_GENRE,
    max_per_language: int = DIVERSITY_MAX_PER_LANGUAGE,
) -> list[ContentItem]:
    """
    Walk the ranking and keep items whose primary genre and language are not
    yet saturated among accepted items. Falls back to the unfiltered top
    `limit` when nothing is accepted.
    """
    accepted = []
    genre_counts: dict[str, int] = defaultdict(int)
    language_counts: dict[str, int] = defaultdict(int)

    for item in ranked:
        genre = item.primary_genre
        if genre is not None and genre_counts[genre] >= max_per_genre:
            continue
        if language_counts[item.language] >= max_per_language:
            continue

        accepted.append(item)
        if genre is not None:
            genre_counts[genre] += 1
        language_counts[item.language] += 1

        if len(accepted) >= limit:
            break

    if not accepted:
        return ranked[:limit]
    return accepted


class CandidateSelector:
    def __init__(
        self,
        catalog: CatalogGateway,
        scorer: HybridScorer,
        similarity_index: PeerSimilarityIndex,
        *,
        max_page_retries: int = MAX_PAGE_RETRIES,
        batch_size: int = RECOMMENDATION_BATCH_SIZE,
        shuffle: bool = False,
        rng: random.Random | None = None,
    ):
        self.catalog = catalog
        self.scorer = scorer
        self.similarity_index = similarity_index
        self.max_page_retries = max_page_retries
        self.batch_size = batch_size
        self.shuffle = shuffle
        self.rng = rng or random.Random()

    async def get_recommendations(
        self,
        session: SwipeSession,
        exclude_ids: Iterable[int] = (),
        page: int = 1,
    ) -> RecommendationBatch:
        excluded = set(exclude_ids) | session.seen_ids()
        if session.is_cold_start:
            return await self._cold_start(session, excluded, page)
        return await self._personalized(session, excluded, page)

    async def _cold_start(self, session: SwipeSession, excluded: set[int], page: int) -> RecommendationBatch:
        prefs = session.preferences
        pool = await self.catalog.curated_pool(prefs.content_type, prefs.languages)
        if pool.error and not pool.items:
            logger.warning(f"Curated pool unavailable: {pool.error}")
            return RecommendationBatch(mode=COLD_START, page=page, error=pool.error)

        items = [item for item in pool.items if item.id not in excluded][:COLD_START_BATCH_SIZE]
        if not items:
            logger.info(f"Curated pool exhausted for {session.user_id}")
        return RecommendationBatch(items=items, mode=COLD_START, page=page, exhausted=not items)

    async def _personalized(self, session: SwipeSession, excluded: set[int], page: int) -> RecommendationBatch:
        prefs = session.preferences
        current = page
        fresh: list[ContentItem] = []

        for attempt in range(self.max_page_retries + 1):
            result = await self.catalog.discover(
                prefs.content_type,
                prefs.languages,
                prefs.genres,
                prefs.year_range,
                current,
                QualityFloor.steady(),
            )
            if result.error:
                logger.warning(f"Catalog unavailable on page {current}: {result.error}")
                return RecommendationBatch(page=current, error=result.error)

            fresh = [item for item in result.items if item.id not in excluded and item.poster_path]
            if fresh or not result.has_more or attempt == self.max_page_retries:
                break
            logger.debug(f"Page {current} had nothing new, trying page {current + 1}")
            current += 1

        if not fresh:
            logger.info(f"No new content for {session.user_id} after page {current}")
            return RecommendationBatch(page=current, exhausted=True)

        ranked, scores = await self._rank(session, fresh)
        items = diversify(ranked, self.batch_size)
        if self.shuffle:
            self.rng.shuffle(items)

        logger.debug(f"Ranked {len(fresh)} candidates for {session.user_id}, returning {len(items)}")
        return RecommendationBatch(
            items=items,
            page=current,
            scores={item.id: scores[item.id] for item in items},
        )

    async def _rank(
        self,
        session: SwipeSession,
        candidates: list[ContentItem],
    ) -> tuple[list[ContentItem], dict[int, HybridScore]]:
        similarities = await self.similarity_index.find_similar_users(session.user_id)
        liked_ids = session.liked_ids()
        cache: dict = {}

        if similarities or liked_ids:
            await self._prefetch(cache, [c.id for c in candidates] + liked_ids[:ITEM_ITEM_MAX_LIKED])

        results = await asyncio.gather(*(
            self.scorer.score_hybrid(
                item,
                session.user_id,
                similarities,
                profile=session.profile,
                liked_ids=liked_ids,
                actions_cache=cache,
            )
            for item in candidates
        ))
        scores = {item.id: score for item, score in zip(candidates, results)}
        ranked = sorted(candidates, key=lambda item: -scores[item.id].total)
        return ranked, scores

    async def _prefetch(self, cache: dict, content_ids: list[int]) -> None:
        """Load peer actions for a whole pass concurrently."""
        ids = list(dict.fromkeys(content_ids))
        store = self.scorer.peer_store
        try:
            results = await asyncio.gather(*(store.actions_for(cid) for cid in ids))
        except PeerStoreError as e:
            logger.warning(f"Could not prefetch peer actions: {e}")
            return
        cache.update(zip(ids, results))
