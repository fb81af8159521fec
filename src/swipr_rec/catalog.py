"""
Catalog gateway over the TMDB v3 REST API.

Every discovery call fans out into one request per (content type, language)
pair, run concurrently; results are merged, filtered and sorted locally.
Transport failures are retried with backoff. A call that gets nothing back
returns an empty CatalogPage with `error` set instead of raising, so callers
can tell "catalog down" apart from "no more content".
"""
from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from .config import (
    TMDB_API_KEY,
    TMDB_BASE_URL,
    HTTP_TIMEOUT,
    MAX_HTTP_RETRIES,
    HTTP_RETRY_DELAY,
    YEAR_RANGE_TOLERANCE,
    MIN_CATALOG_YEAR,
    COLD_START_MIN_RATING,
    COLD_START_MIN_VOTES_MOVIES,
    COLD_START_MIN_VOTES_SERIES,
    STEADY_MIN_VOTES_MOVIES,
    STEADY_MIN_VOTES_SERIES,
)
from .models import ContentItem
from .utils import async_retry_with_backoff

logger = logging.getLogger(__name__)

GENRE_IDS = {
    'Action': 28,
    'Adventure': 12,
    'Comedy': 35,
    'Drama': 18,
    'Fantasy': 14,
    'Horror': 27,
    'Mystery': 9648,
    'Romance': 10749,
    'Sci-Fi': 878,
    'Thriller': 53,
    'Family': 10751,
}

# TV has fewer, broader genres; several movie genres collapse onto one id
TV_GENRE_IDS = {
    'Action': 10759,
    'Adventure': 10759,
    'Comedy': 35,
    'Drama': 18,
    'Fantasy': 10765,
    'Horror': 9648,
    'Mystery': 9648,
    'Romance': 10749,
    'Sci-Fi': 10765,
    'Thriller': 80,
    'Family': 10751,
}

GENRE_NAMES = {
    28: 'Action',
    12: 'Adventure',
    35: 'Comedy',
    18: 'Drama',
    14: 'Fantasy',
    27: 'Horror',
    9648: 'Mystery',
    10749: 'Romance',
    878: 'Sci-Fi',
    53: 'Thriller',
    10751: 'Family',
    10759: 'Action & Adventure',
    10765: 'Sci-Fi & Fantasy',
    80: 'Crime',
}

TV_GENRE_NAMES = {
    10759: 'Action & Adventure',
    35: 'Comedy',
    18: 'Drama',
    10765: 'Sci-Fi & Fantasy',
    9648: 'Mystery',
    10749: 'Romance',
    80: 'Thriller',
    10751: 'Family',
}

# DiscoveryPreferences.content_type -> (TMDB path segment, ContentItem.content_type)
_CONTENT_TYPES = {
    'movies': [('movie', 'movie')],
    'series': [('tv', 'series')],
    'both': [('movie', 'movie'), ('tv', 'series')],
}


@dataclass(frozen=True)
class QualityFloor:
    """Minimum vote counts (per media type) and optional minimum rating."""
    min_votes_movies: int = STEADY_MIN_VOTES_MOVIES
    min_votes_series: int = STEADY_MIN_VOTES_SERIES
    min_rating: float | None = None

    @classmethod
    def steady(cls) -> "QualityFloor":
        return cls()

    @classmethod
    def cold_start(cls) -> "QualityFloor":
        return cls(COLD_START_MIN_VOTES_MOVIES, COLD_START_MIN_VOTES_SERIES, COLD_START_MIN_RATING)

    def min_votes(self, media: str) -> int:
        return self.min_votes_movies if media == 'movie' else self.min_votes_series


@dataclass
class CatalogPage:
    items: list[ContentItem] = field(default_factory=list)
    has_more: bool = False
    error: str | None = None


class CatalogGateway(Protocol):
    async def discover(
        self,
        content_type: str,
        languages: list[str],
        genres: list[str] | None = None,
        year_range: tuple[int, int] | None = None,
        page: int = 1,
        quality_floor: QualityFloor | None = None,
    ) -> CatalogPage: ...

    async def curated_pool(self, content_type: str, languages: list[str]) -> CatalogPage: ...

    async def fetch_item(self, content_id: int, content_type: str = 'movie') -> ContentItem | None: ...


def _genre_names(genre_ids: list[int], media: str) -> tuple[str, ...]:
    names = []
    for gid in genre_ids or []:
        name = TV_GENRE_NAMES.get(gid) if media == 'tv' else None
        name = name or GENRE_NAMES.get(gid)
        if name:
            names.append(name)
    return tuple(names)


def _genre_filter(genres: list[str] | None, media: str) -> str | None:
    table = TV_GENRE_IDS if media == 'tv' else GENRE_IDS
    ids = []
    for genre in genres or []:
        gid = table.get(genre)
        if gid is None:
            logger.debug(f"No TMDB {media} genre id for '{genre}', ignoring")
        elif gid not in ids:
            ids.append(gid)
    return '|'.join(str(gid) for gid in ids) if ids else None


def parse_result(raw: dict, media: str) -> ContentItem | None:
    """Build a ContentItem from a discover/detail result, or None if unusable."""
    title = raw.get('name') if media == 'tv' else raw.get('title')
    if not raw.get('id') or not title:
        return None

    if 'genres' in raw and isinstance(raw['genres'], list):
        genres = tuple(g.get('name') for g in raw['genres'] if g.get('name'))
    else:
        genres = _genre_names(raw.get('genre_ids') or [], media)

    director = None
    crew = (raw.get('credits') or {}).get('crew') or []
    for member in crew:
        if member.get('job') == 'Director':
            director = member.get('name')
            break
    if director is None and raw.get('created_by'):
        director = raw['created_by'][0].get('name')

    return ContentItem(
        id=int(raw['id']),
        title=title,
        genres=genres,
        language=raw.get('original_language') or '',
        release_date=(raw.get('first_air_date') if media == 'tv' else raw.get('release_date')) or '',
        rating=float(raw.get('vote_average') or 0.0),
        popularity=float(raw.get('popularity') or 0.0),
        director=director,
        content_type='series' if media == 'tv' else 'movie',
        vote_count=int(raw.get('vote_count') or 0),
        poster_path=raw.get('poster_path'),
        overview=raw.get('overview') or '',
    )


def _popularity_order(a: ContentItem, b: ContentItem) -> int:
    # Popularity decides unless it is within 1 point, then rating
    if abs(a.popularity - b.popularity) > 1:
        return -1 if a.popularity > b.popularity else 1
    return (b.rating > a.rating) - (b.rating < a.rating)


def _rating_order(a: ContentItem, b: ContentItem) -> int:
    if abs(a.rating - b.rating) > 0.1:
        return -1 if a.rating > b.rating else 1
    return (b.vote_count > a.vote_count) - (b.vote_count < a.vote_count)


class TMDBCatalog:
    """
    CatalogGateway backed by TMDB.

    Use as an async context manager, or pass an existing httpx.AsyncClient
    (the caller then owns its lifecycle).
    """

    def __init__(
        self,
        api_key: str = TMDB_API_KEY,
        base_url: str = TMDB_BASE_URL,
        client: httpx.AsyncClient | None = None,
        max_concurrent: int = 5,
    ):
        if not api_key:
            logger.warning("TMDB_API_KEY is not set; catalog requests will likely be rejected")
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.client = client
        self._owns_client = False
        self.semaphore = asyncio.Semaphore(max_concurrent)

    async def __aenter__(self):
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=HTTP_TIMEOUT)
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._owns_client and self.client is not None:
            await self.client.aclose()
            self.client = None
            self._owns_client = False
        return False

    @async_retry_with_backoff(
        max_retries=MAX_HTTP_RETRIES,
        initial_delay=HTTP_RETRY_DELAY,
        exceptions=(httpx.TransportError,),
    )
    async def _get_json(self, path: str, params: dict) -> dict:
        if self.client is None:
            raise RuntimeError("TMDBCatalog must be used as an async context manager or given a client")
        async with self.semaphore:
            resp = await self.client.get(
                f"{self.base_url}{path}",
                params={'api_key': self.api_key, **params},
            )
        resp.raise_for_status()
        return resp.json()

    async def _fetch_results(self, path: str, params: dict) -> tuple[list[dict], int]:
        data = await self._get_json(path, params)
        return data.get('results') or [], int(data.get('total_pages') or 0)

    async def discover(
        self,
        content_type: str,
        languages: list[str],
        genres: list[str] | None = None,
        year_range: tuple[int, int] | None = None,
        page: int = 1,
        quality_floor: QualityFloor | None = None,
    ) -> CatalogPage:
        floor = quality_floor or QualityFloor.steady()
        bounds = None
        if year_range:
            bounds = (
                max(MIN_CATALOG_YEAR, year_range[0] - YEAR_RANGE_TOLERANCE),
                year_range[1] + YEAR_RANGE_TOLERANCE,
            )

        requests = []
        for media, _ in _CONTENT_TYPES[content_type]:
            date_field = 'first_air_date' if media == 'tv' else 'primary_release_date'
            for language in languages:
                params = {
                    'sort_by': 'popularity.desc,vote_average.desc',
                    'include_adult': 'false',
                    'with_original_language': language,
                    'page': page,
                }
                if floor.min_votes(media):
                    params['vote_count.gte'] = floor.min_votes(media)
                if floor.min_rating is not None:
                    params['vote_average.gte'] = floor.min_rating
                genre_filter = _genre_filter(genres, media)
                if genre_filter:
                    params['with_genres'] = genre_filter
                if bounds:
                    params[f'{date_field}.gte'] = f"{bounds[0]}-01-01"
                    params[f'{date_field}.lte'] = f"{bounds[1]}-12-31"
                requests.append((media, f"/discover/{media}", params))

        items, has_more, error = await self._gather(requests, languages, page)
        if bounds:
            items = [i for i in items if i.year is not None and bounds[0] <= i.year <= bounds[1]]
        items.sort(key=functools.cmp_to_key(_popularity_order))
        return CatalogPage(items=items, has_more=has_more, error=error)

    async def curated_pool(self, content_type: str, languages: list[str]) -> CatalogPage:
        """Highly rated, widely voted titles used before the profile is warm."""
        floor = QualityFloor.cold_start()
        requests = []
        for media, _ in _CONTENT_TYPES[content_type]:
            for language in languages:
                requests.append((media, f"/discover/{media}", {
                    'sort_by': 'vote_average.desc',
                    'include_adult': 'false',
                    'with_original_language': language,
                    'vote_count.gte': floor.min_votes(media),
                    'vote_average.gte': floor.min_rating,
                    'page': 1,
                }))

        items, _, error = await self._gather(requests, languages, 1)
        items.sort(key=functools.cmp_to_key(_rating_order))
        return CatalogPage(items=items, has_more=False, error=error)

    async def _gather(
        self,
        requests: list[tuple[str, str, dict]],
        languages: list[str],
        page: int,
    ) -> tuple[list[ContentItem], bool, str | None]:
        results = await asyncio.gather(
            *(self._fetch_results(path, params) for _, path, params in requests),
            return_exceptions=True,
        )

        items: list[ContentItem] = []
        seen: set[tuple[str, int]] = set()
        has_more = False
        failures = []
        for (media, path, params), result in zip(requests, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"Catalog request {path} ({params.get('with_original_language')}) failed: "
                    f"{type(result).__name__}: {result}"
                )
                failures.append(result)
                continue
            raw_items, total_pages = result
            has_more = has_more or page < total_pages
            for raw in raw_items:
                item = parse_result(raw, media)
                if item is None or not item.poster_path or item.language not in languages:
                    continue
                key = (item.content_type, item.id)
                if key not in seen:
                    seen.add(key)
                    items.append(item)

        error = None
        if failures and len(failures) == len(requests):
            error = f"{type(failures[0]).__name__}: {failures[0]}"
        return items, has_more, error

    async def fetch_item(self, content_id: int, content_type: str = 'movie') -> ContentItem | None:
        """Full detail for one title, or None when TMDB does not have it."""
        media = 'tv' if content_type in ('series', 'tv') else 'movie'
        try:
            data = await self._get_json(f"/{media}/{content_id}", {'append_to_response': 'credits,videos'})
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            logger.warning(f"Failed to fetch {media} {content_id}: {e}")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch {media} {content_id}: {e}")
            return None
        return parse_result(data, media)
