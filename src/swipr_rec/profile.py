"""
Taste profile updates driven by swipes.

The profile is a small, order-preserving summary: liked and disliked genres,
preferred decades, and the mean rating of liked content. Lists keep the most
recently reinforced entry at the end and drop overflow from the front.
"""
import logging
from statistics import mean
from typing import Iterable

from .config import (
    MAX_LIKED_GENRES,
    MAX_DISLIKED_GENRES,
    MAX_PREFERRED_DECADES,
    DISLIKE_PASS_WINDOW,
    DISLIKE_MIN_PASSES,
)
from .models import Action, ContentItem, SwipeAction, TasteProfile

logger = logging.getLogger(__name__)


def _touch(entries: list, value, cap: int) -> None:
    """Move value to the most-recent end, trimming the oldest entries past cap."""
    if value in entries:
        entries.remove(value)
    entries.append(value)
    while len(entries) > cap:
        entries.pop(0)


def _discard(entries: list, value) -> None:
    if value in entries:
        entries.remove(value)


def recompute_rating_preference(profile: TasteProfile, history: Iterable[SwipeAction]) -> float:
    """Set the rating preference to the mean rating over all logged likes."""
    ratings = [entry.rating for entry in history if entry.action is Action.LIKE]
    if ratings:
        profile.average_rating_preference = mean(ratings)
    return profile.average_rating_preference


def _recent_passes_with(history: list[SwipeAction], genre: str) -> list[SwipeAction]:
    passes = [
        entry for entry in reversed(history)
        if entry.action is Action.PASS and genre in entry.genres
    ]
    return passes[:DISLIKE_PASS_WINDOW]


def apply_swipe(
    profile: TasteProfile,
    history: list[SwipeAction],
    item: ContentItem,
    action: Action,
) -> TasteProfile:
    """
    Fold one swipe into the profile.

    `history` must already contain the entry for this swipe; pass promotion
    counts it. Save-for-later leaves the profile untouched.
    """
    if action is Action.LIKE:
        for genre in item.genres:
            _touch(profile.liked_genres, genre, MAX_LIKED_GENRES)
            _discard(profile.disliked_genres, genre)
        if item.decade is not None:
            _touch(profile.preferred_decades, item.decade, MAX_PREFERRED_DECADES)
        recompute_rating_preference(profile, history)

    elif action is Action.PASS:
        for genre in item.genres:
            if len(_recent_passes_with(history, genre)) >= DISLIKE_MIN_PASSES:
                if genre not in profile.disliked_genres:
                    logger.debug(f"Genre '{genre}' promoted to disliked")
                _touch(profile.disliked_genres, genre, MAX_DISLIKED_GENRES)
                _discard(profile.liked_genres, genre)

    return profile
