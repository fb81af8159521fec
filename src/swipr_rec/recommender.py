"""
Content-based and hybrid scoring.

ContentScorer turns a taste profile into a [0, 1] score for one item through a
list of small rule functions. HybridScorer blends that personal signal with
two collaborative signals read from the peer store:

    total = 0.3 * content + 0.4 * user_based + 0.3 * item_item

where content has the neutral base removed, user_based is the
similarity-weighted peer verdict on the item and item_item measures how often
people who liked the user's recent favorites also liked the item.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from .collaborative import PeerAction, PeerSignalStore, PeerStoreError
from .config import (
    CONTENT_BASE_SCORE,
    LIKED_GENRE_BOOST,
    DISLIKED_GENRE_PENALTY,
    PREFERRED_DECADE_BOOST,
    RATING_MATCH_BOOST,
    HIGH_RATING_THRESHOLD,
    HIGH_RATING_BOOST,
    OLD_CONTENT_YEAR,
    OLD_CONTENT_PENALTY,
    HYBRID_WEIGHTS,
    PEER_ACTION_VALUES,
    ITEM_ITEM_MAX_LIKED,
)
from .models import Action, ContentItem, TasteProfile

logger = logging.getLogger(__name__)

PLACEHOLDER_EXPLANATION = "Building your taste profile..."


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class ScoreTerm:
    """One contribution to a content score, kept for display."""
    label: str
    delta: float


@dataclass
class ContentScore:
    score: float
    breakdown: list[ScoreTerm] = field(default_factory=list)


RuleFunc = Callable[[ContentItem, TasteProfile], list[ScoreTerm]]


def _genre_rule(item: ContentItem, profile: TasteProfile) -> list[ScoreTerm]:
    terms = []
    for genre in item.genres:
        if genre in profile.liked_genres:
            terms.append(ScoreTerm(f"Genre: {genre}", LIKED_GENRE_BOOST))
        if genre in profile.disliked_genres:
            terms.append(ScoreTerm(f"Disliked genre: {genre}", DISLIKED_GENRE_PENALTY))
    return terms


def _decade_rule(item: ContentItem, profile: TasteProfile) -> list[ScoreTerm]:
    if item.decade is not None and item.decade in profile.preferred_decades:
        return [ScoreTerm(f"From the {item.decade}s", PREFERRED_DECADE_BOOST)]
    return []


def _rating_rule(item: ContentItem, profile: TasteProfile) -> list[ScoreTerm]:
    terms = []
    if item.rating >= profile.average_rating_preference:
        terms.append(ScoreTerm(f"Rated {item.rating:.1f}, at or above your usual", RATING_MATCH_BOOST))
    if item.rating >= HIGH_RATING_THRESHOLD:
        terms.append(ScoreTerm(f"Highly rated ({item.rating:.1f})", HIGH_RATING_BOOST))
    return terms


def _age_rule(item: ContentItem, profile: TasteProfile) -> list[ScoreTerm]:
    """Nudge down older content unless the user has shown a taste for it."""
    year = item.year
    if year is None or year >= OLD_CONTENT_YEAR:
        return []
    if any(decade < OLD_CONTENT_YEAR for decade in profile.preferred_decades):
        return []
    return [ScoreTerm(f"Released before {OLD_CONTENT_YEAR}", OLD_CONTENT_PENALTY)]


DEFAULT_RULES: list[RuleFunc] = [_genre_rule, _decade_rule, _rating_rule, _age_rule]


class ContentScorer:
    """Composable content scoring pipeline."""

    def __init__(self, rules: list[RuleFunc] | None = None, base: float = CONTENT_BASE_SCORE):
        self.rules = rules if rules is not None else list(DEFAULT_RULES)
        self.base = base

    def score(self, item: ContentItem, profile: TasteProfile) -> ContentScore:
        breakdown: list[ScoreTerm] = []
        for rule in self.rules:
            breakdown.extend(rule(item, profile))
        raw = self.base + sum(term.delta for term in breakdown)
        return ContentScore(score=_clamp(raw), breakdown=breakdown)


_default_scorer = ContentScorer()


def score_content(item: ContentItem, profile: TasteProfile) -> ContentScore:
    return _default_scorer.score(item, profile)


@dataclass
class HybridScore:
    content_score: float
    user_based_score: float
    item_item_score: float
    total: float
    explanation: list[str] = field(default_factory=list)


@dataclass
class _PeerVerdict:
    score: float = 0.0
    likes: int = 0
    passes: int = 0


@dataclass
class Association:
    """How a liked item contributes to the item-item score of a candidate."""
    liked_id: int
    co_likers: int
    also_liked: int

    @property
    def strength(self) -> float:
        return self.also_liked / self.co_likers if self.co_likers else 0.0


ActionsCache = dict[int, list[PeerAction]]


class HybridScorer:
    def __init__(
        self,
        peer_store: PeerSignalStore,
        content_scorer: Optional[ContentScorer] = None,
        weights: dict[str, float] | None = None,
    ):
        self.peer_store = peer_store
        self.content_scorer = content_scorer or _default_scorer
        self.weights = weights or HYBRID_WEIGHTS

    async def _actions_for(self, content_id: int, cache: ActionsCache) -> list[PeerAction]:
        if content_id not in cache:
            cache[content_id] = await self.peer_store.actions_for(content_id)
        return cache[content_id]

    async def _user_based(
        self,
        item: ContentItem,
        peer_similarities: dict[str, float],
        cache: ActionsCache,
    ) -> _PeerVerdict:
        if not peer_similarities:
            return _PeerVerdict()

        weighted = 0.0
        total_weight = 0.0
        verdict = _PeerVerdict()
        for action in await self._actions_for(item.id, cache):
            weight = peer_similarities.get(action.peer_id)
            if not weight:
                continue
            weighted += weight * PEER_ACTION_VALUES[action.action.value]
            total_weight += weight
            if action.action is Action.LIKE:
                verdict.likes += 1
            elif action.action is Action.PASS:
                verdict.passes += 1

        if total_weight > 0:
            verdict.score = _clamp(weighted / total_weight)
        return verdict

    async def explain_associations(
        self,
        item: ContentItem,
        user_id: str,
        liked_ids: list[int],
        actions_cache: ActionsCache | None = None,
    ) -> list[Association]:
        """
        Per liked item (most recent first, at most ITEM_ITEM_MAX_LIKED), how many
        other users liked it and how many of those also liked the candidate.
        Liked items nobody else liked are left out.
        """
        cache = actions_cache if actions_cache is not None else {}
        sampled = [cid for cid in liked_ids if cid != item.id][:ITEM_ITEM_MAX_LIKED]
        if not sampled:
            return []

        target_likers = {
            a.peer_id for a in await self._actions_for(item.id, cache) if a.action is Action.LIKE
        }
        associations = []
        for liked_id in sampled:
            co_likers = {
                a.peer_id for a in await self._actions_for(liked_id, cache)
                if a.action is Action.LIKE and a.peer_id != user_id
            }
            if not co_likers:
                continue
            associations.append(Association(liked_id, len(co_likers), len(co_likers & target_likers)))
        return associations

    async def score_hybrid(
        self,
        item: ContentItem,
        user_id: str,
        peer_similarities: dict[str, float],
        *,
        profile: TasteProfile,
        liked_ids: list[int],
        actions_cache: ActionsCache | None = None,
    ) -> HybridScore:
        """
        Blend content and collaborative signal for one item.

        Args:
            peer_similarities: peer id to similarity, from PeerSimilarityIndex
            liked_ids: the user's liked content ids, most recent first
            actions_cache: shared across one ranking pass to avoid re-reading
                the same content's peer actions

        Peer store failures zero both collaborative terms; they never raise.
        """
        cache = actions_cache if actions_cache is not None else {}
        content = max(0.0, self.content_scorer.score(item, profile).score - CONTENT_BASE_SCORE)

        verdict = _PeerVerdict()
        associations: list[Association] = []
        try:
            verdict = await self._user_based(item, peer_similarities, cache)
            associations = await self.explain_associations(item, user_id, liked_ids, cache)
        except PeerStoreError as e:
            logger.warning(f"Collaborative signal unavailable for {item.id}, using content only: {e}")
            verdict = _PeerVerdict()
            associations = []

        item_item = (
            sum(a.strength for a in associations) / len(associations) if associations else 0.0
        )

        total = _clamp(
            self.weights['content'] * content
            + self.weights['user_based'] * verdict.score
            + self.weights['item_item'] * item_item
        )

        explanation = []
        if content > 0:
            explanation.append(f"Your preferences match: {content * 100:.0f}%")
        if verdict.score > 0:
            explanation.append(_describe_verdict(verdict))
        supporting = sum(1 for a in associations if a.also_liked)
        if item_item > 0:
            explanation.append(f"People who liked {supporting} of your favorites also liked this")
        if not explanation:
            explanation.append(PLACEHOLDER_EXPLANATION)

        return HybridScore(
            content_score=content,
            user_based_score=verdict.score,
            item_item_score=item_item,
            total=total,
            explanation=explanation,
        )


def _describe_verdict(verdict: _PeerVerdict) -> str:
    if verdict.likes:
        text = f"{verdict.likes} user{'s' if verdict.likes > 1 else ''} with similar taste liked this"
        if verdict.passes:
            text += f" ({verdict.passes} passed)"
        return text
    # Positive score without likes means saves carried it
    return "Similar users saved this for later"
