"""
Per-user swipe session: interaction log, taste profile, stats and watchlist.

A SwipeSession is the single aggregate a caller mutates. Every mutation is
written through to the SessionStore (when one is attached) as one JSON
document, so a crash never leaves the log and counters out of step.
"""
import logging
import sqlite3
from collections import deque
from datetime import datetime
from typing import Any

from .config import COLD_START_SWIPES, INTERACTION_LOG_LIMIT
from .database import (
    delete_session,
    load_json,
    load_session_blob,
    save_session_blob,
)
from .models import (
    Action,
    ContentItem,
    DiscoveryPreferences,
    SessionStats,
    SwipeAction,
    TasteProfile,
    Watchlist,
)
from .profile import apply_swipe

logger = logging.getLogger(__name__)


class SwipeSession:
    def __init__(
        self,
        user_id: str,
        profile: TasteProfile | None = None,
        history: list[SwipeAction] | None = None,
        watchlist: Watchlist | None = None,
        stats: SessionStats | None = None,
        preferences: DiscoveryPreferences | None = None,
        last_updated: str | None = None,
        store: "SessionStore | None" = None,
    ):
        self.user_id = user_id
        self.profile = profile or TasteProfile()
        # Oldest first; appending past the limit drops the oldest entry
        self.history: deque[SwipeAction] = deque(history or [], maxlen=INTERACTION_LOG_LIMIT)
        self.watchlist = watchlist or Watchlist()
        self.stats = stats or SessionStats()
        self.preferences = preferences or DiscoveryPreferences()
        self.last_updated = last_updated
        self.store = store

    def record_swipe(self, item: ContentItem, action: Action | str) -> SwipeAction:
        """Log a swipe, update counters, profile and watchlist, then persist."""
        action = Action.parse(action)
        entry = SwipeAction.from_item(item, action)
        self.history.append(entry)
        self.stats.record(action)
        apply_swipe(self.profile, list(self.history), item, action)
        if action is Action.SAVE_FOR_LATER:
            self.watchlist.add(item)

        logger.debug(f"{self.user_id}: {action.value} {item.id} ({item.title})")
        self._persist()
        return entry

    def undo_last(self) -> ContentItem | None:
        """
        Revert the most recent swipe.

        Counters and the watchlist are rolled back; taste profile drift is not.
        Returns a minimal item rebuilt from the log snapshot, or None when the
        log is empty.
        """
        if not self.history:
            return None

        entry = self.history.pop()
        self.stats.revert(entry.action)
        if entry.action is Action.SAVE_FOR_LATER:
            self.watchlist.remove(entry.content_id)

        logger.info(f"{self.user_id}: undid {entry.action.value} on {entry.content_id}")
        self._persist()
        return entry.to_item()

    def last_swipe(self) -> SwipeAction | None:
        return self.history[-1] if self.history else None

    def remove_from_watchlist(self, content_id: int) -> bool:
        removed = self.watchlist.remove(content_id)
        if removed:
            self._persist()
        return removed

    def set_preferences(self, preferences: DiscoveryPreferences) -> None:
        self.preferences = preferences
        self._persist()

    def seen_ids(self) -> set[int]:
        return {entry.content_id for entry in self.history} | {item.id for item in self.watchlist}

    def liked_ids(self) -> list[int]:
        """Liked content ids, most recent first, without duplicates."""
        ids = []
        for entry in reversed(self.history):
            if entry.action is Action.LIKE and entry.content_id not in ids:
                ids.append(entry.content_id)
        return ids

    @property
    def is_cold_start(self) -> bool:
        return self.stats.total_swipes < COLD_START_SWIPES

    def summary(self) -> dict[str, Any]:
        return {
            'user_id': self.user_id,
            'stats': self.stats.to_dict(),
            'watchlist_size': len(self.watchlist),
            'has_history': bool(self.history),
            'cold_start': self.is_cold_start,
            'last_updated': self.last_updated,
        }

    def reset(self) -> None:
        """Forget everything about this user, including the stored document."""
        self.profile = TasteProfile()
        self.history.clear()
        self.watchlist = Watchlist()
        self.stats = SessionStats()
        self.preferences = DiscoveryPreferences()
        self.last_updated = None
        if self.store is not None:
            self.store.clear(self.user_id)

    def _persist(self) -> None:
        self.last_updated = datetime.now().isoformat()
        if self.store is not None:
            self.store.save(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            'profile': self.profile.to_dict(),
            'history': [entry.to_dict() for entry in self.history],
            'watchlist': self.watchlist.to_list(),
            'stats': self.stats.to_dict(),
            'preferences': self.preferences.to_dict(),
            'last_updated': self.last_updated,
        }

    @classmethod
    def from_dict(cls, user_id: str, payload: dict[str, Any], store: "SessionStore | None" = None) -> "SwipeSession":
        history = []
        raw_history = payload.get('history')
        for raw in raw_history if isinstance(raw_history, list) else []:
            try:
                history.append(SwipeAction.from_dict(raw))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed history entry for {user_id}: {e}")
        history = history[-INTERACTION_LOG_LIMIT:]

        raw_stats = payload.get('stats')
        if isinstance(raw_stats, dict):
            stats = SessionStats.from_dict(raw_stats)
        else:
            # Counters missing: rebuild them from the log
            stats = SessionStats()
            for entry in history:
                stats.record(entry.action)

        return cls(
            user_id,
            profile=TasteProfile.from_dict(_as_dict(payload.get('profile'))),
            history=history,
            watchlist=Watchlist.from_list(payload.get('watchlist')),
            stats=stats,
            preferences=DiscoveryPreferences.from_dict(_as_dict(payload.get('preferences'))),
            last_updated=payload.get('last_updated'),
            store=store,
        )


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


class SessionStore:
    """Loads and saves SwipeSession documents in the `sessions` table."""

    def load(self, user_id: str) -> SwipeSession:
        """Load a user's session; missing or corrupt documents give a fresh one."""
        blob = load_session_blob(user_id)
        if blob is None:
            logger.debug(f"No stored session for {user_id}, starting fresh")
            return SwipeSession(user_id, store=self)

        payload = load_json(blob, default={})
        if not isinstance(payload, dict) or not payload:
            logger.warning(f"Stored session for {user_id} is unreadable, starting fresh")
            return SwipeSession(user_id, store=self)

        try:
            return SwipeSession.from_dict(user_id, payload, store=self)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Stored session for {user_id} is malformed ({e}), starting fresh")
            return SwipeSession(user_id, store=self)

    def save(self, session: SwipeSession) -> bool:
        try:
            save_session_blob(session.user_id, session.to_dict())
            return True
        except sqlite3.Error as e:
            logger.error(f"Failed to persist session for {session.user_id}: {e}")
            return False

    def clear(self, user_id: str) -> None:
        delete_session(user_id)
        logger.info(f"Cleared stored session for {user_id}")
