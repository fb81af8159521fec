"""
Value types shared by the scoring engine.

Everything here serializes to plain dicts so a whole session can be stored as
one JSON document. Loaders are tolerant: missing or malformed fields fall back
to defaults instead of raising.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .config import DEFAULT_LANGUAGES, DEFAULT_RATING_PREFERENCE

logger = logging.getLogger(__name__)


class Action(str, Enum):
    LIKE = "like"
    PASS = "pass"
    SAVE_FOR_LATER = "save_for_later"

    @classmethod
    def parse(cls, value: "Action | str") -> "Action":
        """Accept enum members, canonical values and the legacy/CLI aliases."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        normalized = _ACTION_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown swipe action: {value!r}") from None


_ACTION_ALIASES = {
    "save": "save_for_later",
    "unwatched": "save_for_later",
    "dislike": "pass",
}


def parse_year(release_date: str | None) -> int | None:
    """Extract the year from an ISO-ish date string ('2010-07-16' or '2010')."""
    if not release_date:
        return None
    try:
        return int(str(release_date)[:4])
    except ValueError:
        return None


def decade_of(year: int | None) -> int | None:
    if year is None:
        return None
    return (year // 10) * 10


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_str_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v) for v in value if v is not None]


def _as_int_list(value: Any) -> list[int]:
    if not isinstance(value, (list, tuple)):
        return []
    ints = []
    for v in value:
        try:
            ints.append(int(v))
        except (TypeError, ValueError):
            continue
    return ints


@dataclass(frozen=True, eq=False)
class ContentItem:
    """A catalog movie or series. Identity is the catalog id."""
    id: int
    title: str
    genres: tuple[str, ...] = ()
    language: str = ""
    release_date: str = ""
    rating: float = 0.0
    popularity: float = 0.0
    director: str | None = None
    content_type: str = "movie"
    vote_count: int = 0
    poster_path: str | None = None
    overview: str = ""

    def __post_init__(self) -> None:
        # Genres are a set, but the catalog order is kept so genres[0] is the primary genre
        object.__setattr__(self, "genres", tuple(dict.fromkeys(self.genres or ())))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ContentItem):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def year(self) -> int | None:
        return parse_year(self.release_date)

    @property
    def decade(self) -> int | None:
        return decade_of(self.year)

    @property
    def primary_genre(self) -> str | None:
        return self.genres[0] if self.genres else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "genres": list(self.genres),
            "language": self.language,
            "release_date": self.release_date,
            "rating": self.rating,
            "popularity": self.popularity,
            "director": self.director,
            "content_type": self.content_type,
            "vote_count": self.vote_count,
            "poster_path": self.poster_path,
            "overview": self.overview,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ContentItem":
        return cls(
            id=int(payload["id"]),
            title=str(payload.get("title") or ""),
            genres=tuple(_as_str_list(payload.get("genres"))),
            language=str(payload.get("language") or ""),
            release_date=str(payload.get("release_date") or ""),
            rating=_as_float(payload.get("rating")),
            popularity=_as_float(payload.get("popularity")),
            director=payload.get("director"),
            content_type=str(payload.get("content_type") or "movie"),
            vote_count=_as_int(payload.get("vote_count")),
            poster_path=payload.get("poster_path"),
            overview=str(payload.get("overview") or ""),
        )


@dataclass
class SwipeAction:
    """One interaction log entry with the content snapshot needed for undo."""
    content_id: int
    action: Action
    timestamp: str
    genres: tuple[str, ...] = ()
    year: int | None = None
    rating: float = 0.0
    title: str = ""

    @classmethod
    def from_item(cls, item: ContentItem, action: Action, timestamp: datetime | None = None) -> "SwipeAction":
        return cls(
            content_id=item.id,
            action=action,
            timestamp=(timestamp or datetime.now()).isoformat(),
            genres=item.genres,
            year=item.year,
            rating=item.rating,
            title=item.title,
        )

    def to_item(self) -> ContentItem:
        """Rebuild a minimal item from the snapshot (full detail may be unavailable)."""
        return ContentItem(
            id=self.content_id,
            title=self.title,
            genres=self.genres,
            release_date=str(self.year) if self.year else "",
            rating=self.rating,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_id": self.content_id,
            "action": self.action.value,
            "timestamp": self.timestamp,
            "snapshot": {
                "genres": list(self.genres),
                "year": self.year,
                "rating": self.rating,
                "title": self.title,
            },
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SwipeAction":
        snapshot = payload.get("snapshot")
        if not isinstance(snapshot, dict):
            snapshot = {}
        year = snapshot.get("year")
        return cls(
            content_id=int(payload["content_id"]),
            action=Action.parse(payload["action"]),
            timestamp=str(payload.get("timestamp") or ""),
            genres=tuple(_as_str_list(snapshot.get("genres"))),
            year=_as_int(year) if year is not None else None,
            rating=_as_float(snapshot.get("rating")),
            title=str(snapshot.get("title") or ""),
        )


@dataclass
class TasteProfile:
    """
    Evolving summary of a user's taste.

    Lists are ordered oldest-relevant first; the most recently reinforced entry
    sits at the end and overflow is dropped from the front.
    """
    liked_genres: list[str] = field(default_factory=list)
    disliked_genres: list[str] = field(default_factory=list)
    preferred_decades: list[int] = field(default_factory=list)
    average_rating_preference: float = DEFAULT_RATING_PREFERENCE

    def to_dict(self) -> dict[str, Any]:
        return {
            "liked_genres": list(self.liked_genres),
            "disliked_genres": list(self.disliked_genres),
            "preferred_decades": list(self.preferred_decades),
            "average_rating_preference": self.average_rating_preference,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "TasteProfile":
        payload = payload or {}
        disliked = _as_str_list(payload.get("disliked_genres"))
        # Liked wins on a corrupted overlap, matching the "like evicts disliked" rule
        liked = _as_str_list(payload.get("liked_genres"))
        return cls(
            liked_genres=liked,
            disliked_genres=[g for g in disliked if g not in liked],
            preferred_decades=_as_int_list(payload.get("preferred_decades")),
            average_rating_preference=_as_float(
                payload.get("average_rating_preference"), DEFAULT_RATING_PREFERENCE
            ),
        )


@dataclass
class SessionStats:
    """Denormalized counters, always equal to what the interaction log implies."""
    total_swipes: int = 0
    likes_count: int = 0
    dislikes_count: int = 0
    saved_count: int = 0

    _COUNTERS = {
        Action.LIKE: "likes_count",
        Action.PASS: "dislikes_count",
        Action.SAVE_FOR_LATER: "saved_count",
    }

    def record(self, action: Action) -> None:
        self.total_swipes += 1
        attr = self._COUNTERS[action]
        setattr(self, attr, getattr(self, attr) + 1)

    def revert(self, action: Action) -> None:
        self.total_swipes = max(0, self.total_swipes - 1)
        attr = self._COUNTERS[action]
        setattr(self, attr, max(0, getattr(self, attr) - 1))

    def to_dict(self) -> dict[str, int]:
        return {
            "total_swipes": self.total_swipes,
            "likes_count": self.likes_count,
            "dislikes_count": self.dislikes_count,
            "saved_count": self.saved_count,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "SessionStats":
        payload = payload or {}
        return cls(
            total_swipes=_as_int(payload.get("total_swipes")),
            likes_count=_as_int(payload.get("likes_count")),
            dislikes_count=_as_int(payload.get("dislikes_count")),
            saved_count=_as_int(payload.get("saved_count", payload.get("unwatched_count"))),
        )


class Watchlist:
    """Ordered set of saved items keyed by id, most recently saved first."""

    def __init__(self, items: list[ContentItem] | None = None):
        self._items: list[ContentItem] = []
        for item in items or []:
            if item.id not in self:
                self._items.append(item)

    def __contains__(self, key: object) -> bool:
        content_id = key.id if isinstance(key, ContentItem) else key
        return any(item.id == content_id for item in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    def add(self, item: ContentItem) -> bool:
        """Insert at the front; returns False when the id is already saved."""
        if item.id in self:
            return False
        self._items.insert(0, item)
        return True

    def remove(self, content_id: int) -> bool:
        """Remove by id; absent ids are a successful no-op (returns False)."""
        before = len(self._items)
        self._items = [item for item in self._items if item.id != content_id]
        return len(self._items) != before

    def list(self) -> list[ContentItem]:
        return list(self._items)

    def to_list(self) -> list[dict[str, Any]]:
        return [item.to_dict() for item in self._items]

    @classmethod
    def from_list(cls, payload: Any) -> "Watchlist":
        items = []
        for entry in payload if isinstance(payload, list) else []:
            try:
                items.append(ContentItem.from_dict(entry))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed watchlist entry: {e}")
        return cls(items)


@dataclass
class DiscoveryPreferences:
    """The user's declared catalog filters."""
    languages: list[str] = field(default_factory=lambda: list(DEFAULT_LANGUAGES))
    content_type: str = "movies"  # movies | series | both
    genres: list[str] = field(default_factory=list)
    year_range: tuple[int, int] | None = None

    def __post_init__(self) -> None:
        if self.content_type not in ("movies", "series", "both"):
            raise ValueError(f"Unknown content type: {self.content_type!r}")
        if not self.languages:
            self.languages = list(DEFAULT_LANGUAGES)

    def to_dict(self) -> dict[str, Any]:
        return {
            "languages": list(self.languages),
            "content_type": self.content_type,
            "genres": list(self.genres),
            "year_range": list(self.year_range) if self.year_range else None,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "DiscoveryPreferences":
        payload = payload or {}
        raw_range = payload.get("year_range")
        bounds = _as_int_list(raw_range)
        year_range = tuple(bounds) if len(bounds) == 2 and len(raw_range) == 2 else None
        content_type = payload.get("content_type")
        if content_type not in ("movies", "series", "both"):
            content_type = "movies"
        return cls(
            languages=_as_str_list(payload.get("languages")) or list(DEFAULT_LANGUAGES),
            content_type=content_type,
            genres=_as_str_list(payload.get("genres")),
            year_range=year_range,
        )
