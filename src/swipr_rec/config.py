"""
Configuration constants for the swipr recommendation engine.

This module centralizes all magic numbers and configurable parameters.
Values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


# Database Configuration
DB_PATH = Path(os.environ.get("SWIPR_DB", "data/swipr.db"))

# Catalog (TMDB) Configuration
TMDB_API_KEY = os.environ.get("TMDB_API_KEY", "")
TMDB_BASE_URL = os.environ.get("TMDB_BASE_URL", "https://api.themoviedb.org/3")
HTTP_TIMEOUT = _get_float_env("SWIPR_HTTP_TIMEOUT", 15.0, min_val=1.0)
MAX_HTTP_RETRIES = _get_int_env("SWIPR_MAX_HTTP_RETRIES", 3, min_val=1)
HTTP_RETRY_DELAY = 0.5

# Year range tolerance applied to discovery filters (years on each side)
YEAR_RANGE_TOLERANCE = 2
MIN_CATALOG_YEAR = 1900

# Interaction log / taste profile bounds
INTERACTION_LOG_LIMIT = 100
MAX_LIKED_GENRES = 10
MAX_DISLIKED_GENRES = 8
MAX_PREFERRED_DECADES = 6
DEFAULT_RATING_PREFERENCE = 7.0

# A pass promotes a genre to disliked when it shows up in at least
# DISLIKE_MIN_PASSES of the last DISLIKE_PASS_WINDOW passes carrying it
DISLIKE_PASS_WINDOW = 3
DISLIKE_MIN_PASSES = 2

# Content scoring
CONTENT_BASE_SCORE = 0.5
LIKED_GENRE_BOOST = 0.4
DISLIKED_GENRE_PENALTY = -0.6
PREFERRED_DECADE_BOOST = 0.2
RATING_MATCH_BOOST = 0.1
HIGH_RATING_THRESHOLD = 8.0
HIGH_RATING_BOOST = 0.1
OLD_CONTENT_YEAR = 2000
OLD_CONTENT_PENALTY = -0.1

# Hybrid blend
HYBRID_WEIGHTS = {
    'content': 0.3,
    'user_based': 0.4,
    'item_item': 0.3,
}

# Peer action values for the user-based collaborative score
PEER_ACTION_VALUES = {
    'like': 1.0,
    'save_for_later': 0.5,
    'pass': -0.5,
}

# Peer similarity
MIN_COMMON_CONTENT = 3
DEFAULT_MIN_SIMILARITY = 0.3
MUTUAL_LIKE_BONUS = 0.1
SIMILARITY_CACHE_TTL = _get_float_env("SWIPR_SIMILARITY_TTL", 300.0, min_val=0.0)
ITEM_ITEM_MAX_LIKED = 10

# Candidate selection
COLD_START_SWIPES = 10
COLD_START_BATCH_SIZE = 10
RECOMMENDATION_BATCH_SIZE = 20
MAX_PAGE_RETRIES = _get_int_env("SWIPR_MAX_PAGE_RETRIES", 3, min_val=0)
DIVERSITY_MAX_PER_GENRE = 3
DIVERSITY_MAX_PER_LANGUAGE = 5
QUEUE_LOW_WATERMARK = _get_int_env("SWIPR_QUEUE_LOW_WATERMARK", 5, min_val=0)

# Quality floors: cold start uses tight thresholds, steady state relaxed ones
COLD_START_MIN_RATING = 8.0
COLD_START_MIN_VOTES_MOVIES = 1000
COLD_START_MIN_VOTES_SERIES = 500
STEADY_MIN_VOTES_MOVIES = 50
STEADY_MIN_VOTES_SERIES = 0

DEFAULT_LANGUAGES = ["en"]
