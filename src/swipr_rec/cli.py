import argparse
import asyncio
import atexit
import json
import logging

from tqdm import tqdm

from .catalog import TMDBCatalog
from .collaborative import PeerSimilarityIndex, PeerStoreError, SqlitePeerStore
from .config import DEFAULT_MIN_SIMILARITY
from .database import (
    cache_content_items,
    close_pool,
    count_peer_actions,
    init_db,
    insert_peer_actions_batch,
    load_content_item,
)
from .models import Action, ContentItem, DiscoveryPreferences
from .recommender import HybridScorer
from .selector import CandidateSelector
from .session import SessionStore

logger = logging.getLogger(__name__)

IMPORT_CHUNK_SIZE = 500

atexit.register(close_pool)


def _parse_year_range(value: str) -> tuple[int, int]:
    try:
        start, end = (int(part) for part in value.replace(':', '-').split('-', 1))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Year range must look like 1990-2005, got '{value}'")
    if start > end:
        raise argparse.ArgumentTypeError(f"Year range start {start} is after end {end}")
    return start, end


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(',') if part.strip()]


def _describe(item: ContentItem) -> str:
    year = f" ({item.year})" if item.year else ""
    genres = ", ".join(item.genres) or "no genres"
    return f"{item.title}{year} [{item.id}] - {genres}, {item.rating:.1f}"


def _update_preferences(session, args: argparse.Namespace) -> None:
    prefs = session.preferences
    changed = False
    overrides = {
        'languages': args.languages,
        'genres': args.genres,
        'content_type': args.content_type,
        'year_range': args.year_range,
    }
    values = prefs.to_dict()
    for key, value in overrides.items():
        if value is not None:
            values[key] = value
            changed = True
    if changed:
        session.set_preferences(DiscoveryPreferences.from_dict(values))
        logger.info(f"Updated discovery preferences: {session.preferences.to_dict()}")


async def _recommend(session, page: int, shuffle: bool):
    store = SqlitePeerStore()
    async with TMDBCatalog() as catalog:
        selector = CandidateSelector(
            catalog,
            HybridScorer(store),
            PeerSimilarityIndex(store),
            shuffle=shuffle,
        )
        return await selector.get_recommendations(session, page=page)


def cmd_recommend(args: argparse.Namespace) -> None:
    """Show the next batch of recommendations for a user."""
    init_db()
    session = SessionStore().load(args.user)
    _update_preferences(session, args)

    batch = asyncio.run(_recommend(session, args.page, args.shuffle))

    if batch.error:
        logger.error(f"Catalog unavailable: {batch.error}")
        return
    if batch.exhausted:
        logger.info("\nNo more content matches your preferences. Try widening them.")
        return

    cache_content_items([item.to_dict() for item in batch.items])

    mode = "Popular picks to get you started" if batch.mode == 'cold_start' else "Recommended for you"
    logger.info(f"\n{mode} (page {batch.page}):")
    logger.info("-" * 60)
    for i, item in enumerate(batch.items[:args.limit], 1):
        logger.info(f"{i:2}. {_describe(item)}")
        score = batch.scores.get(item.id)
        if score is not None:
            logger.info(f"    score {score.total:.2f}: " + "; ".join(score.explanation))


async def _fetch_item(content_id: int, content_type: str) -> ContentItem | None:
    async with TMDBCatalog() as catalog:
        return await catalog.fetch_item(content_id, content_type)


def _resolve_item(content_id: int, content_type: str | None) -> ContentItem | None:
    cached = load_content_item(content_id, content_type)
    if cached is not None:
        return ContentItem.from_dict(cached)

    logger.debug(f"{content_id} not cached, fetching details")
    item = asyncio.run(_fetch_item(content_id, content_type or 'movie'))
    if item is not None:
        cache_content_items([item.to_dict()])
    return item


def cmd_swipe(args: argparse.Namespace) -> None:
    """Record a swipe on a content item."""
    init_db()
    action = Action.parse(args.action)
    item = _resolve_item(args.content_id, args.content_type)
    if item is None:
        logger.error(f"Unknown content id {args.content_id}. Run `recommend` first or check the id.")
        return

    session = SessionStore().load(args.user)
    session.record_swipe(item, action)

    try:
        asyncio.run(SqlitePeerStore().record_action(args.user, item.id, action))
    except PeerStoreError as e:
        logger.warning(f"Swipe saved locally but not shared: {e}")

    logger.info(f"{action.value}: {_describe(item)}")
    stats = session.stats
    logger.info(f"  {stats.total_swipes} swipes ({stats.likes_count} liked, "
                f"{stats.dislikes_count} passed, {stats.saved_count} saved)")


def cmd_undo(args: argparse.Namespace) -> None:
    """Revert the most recent swipe."""
    init_db()
    session = SessionStore().load(args.user)
    item = session.undo_last()
    if item is None:
        logger.info("Nothing to undo.")
        return
    logger.info(f"Undid last swipe on {item.title or item.id} [{item.id}]")


def cmd_watchlist(args: argparse.Namespace) -> None:
    """List the watchlist or remove an entry from it."""
    init_db()
    session = SessionStore().load(args.user)

    if args.remove is not None:
        if session.remove_from_watchlist(args.remove):
            logger.info(f"Removed {args.remove} from watchlist")
        else:
            logger.info(f"{args.remove} was not in the watchlist")
        return

    items = session.watchlist.list()
    if not items:
        logger.info("Watchlist is empty.")
        return
    logger.info(f"\nWatchlist for {args.user} ({len(items)}):")
    for item in items:
        logger.info(f"  {_describe(item)}")


def cmd_profile(args: argparse.Namespace) -> None:
    """Show the user's taste profile and session stats."""
    init_db()
    session = SessionStore().load(args.user)
    summary = session.summary()
    profile = session.profile

    if not summary['has_history']:
        logger.info(f"No swipes yet for {args.user}.")

    stats = summary['stats']
    logger.info(f"\nProfile for {args.user}")
    logger.info(f"  Swipes: {stats['total_swipes']} ({stats['likes_count']} liked, "
                f"{stats['dislikes_count']} passed, {stats['saved_count']} saved)")
    logger.info(f"  Watchlist: {summary['watchlist_size']} items")
    logger.info(f"  Mode: {'cold start' if summary['cold_start'] else 'personalized'}")
    logger.info(f"  Liked genres: {', '.join(reversed(profile.liked_genres)) or '-'}")
    logger.info(f"  Disliked genres: {', '.join(reversed(profile.disliked_genres)) or '-'}")
    decades = ', '.join(f"{d}s" for d in reversed(profile.preferred_decades))
    logger.info(f"  Preferred decades: {decades or '-'}")
    logger.info(f"  Rating preference: {profile.average_rating_preference:.1f}")

    last = session.last_swipe()
    if last is not None:
        logger.info(f"  Last swipe: {last.action.value} on {last.title or last.content_id} ({last.timestamp})")


def cmd_similar_users(args: argparse.Namespace) -> None:
    """Show peers whose swipes agree with the user's."""
    init_db()
    index = PeerSimilarityIndex(SqlitePeerStore())
    try:
        matches = asyncio.run(index.describe_matches(args.user))
    except PeerStoreError as e:
        logger.error(f"Peer data unavailable: {e}")
        return

    matches = [m for m in matches if m.similarity >= args.min_similarity]
    if not matches:
        logger.info(f"\nNo users with similarity >= {args.min_similarity} found for {args.user}.")
        return

    logger.info(f"\nUsers with similar taste to {args.user}:")
    logger.info("-" * 50)
    for match in matches[:args.limit]:
        logger.info(
            f"  {match.peer_id}: {match.similarity:.2f} similarity "
            f"({match.agreements}/{match.common_count} agree, {match.mutual_likes} mutual likes)"
        )


def cmd_import_actions(args: argparse.Namespace) -> None:
    """Bulk-load peer actions from a JSON list of {user_id, content_id, action}."""
    with open(args.file, 'r') as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get('actions', [])

    init_db()
    rows = []
    skipped = 0
    for entry in data:
        try:
            rows.append((str(entry['user_id']), int(entry['content_id']), Action.parse(entry['action']).value))
        except (KeyError, TypeError, ValueError) as e:
            skipped += 1
            logger.debug(f"Skipping invalid action {entry!r}: {e}")

    imported = 0
    for i in tqdm(range(0, len(rows), IMPORT_CHUNK_SIZE), desc="Actions"):
        imported += insert_peer_actions_batch(rows[i:i + IMPORT_CHUNK_SIZE])

    totals = count_peer_actions()
    logger.info(f"Imported {imported} actions ({skipped} skipped). "
                f"Store now holds {totals['actions']} actions from {totals['users']} users.")


def cmd_reset(args: argparse.Namespace) -> None:
    """Forget a user's session. Shared peer actions are kept."""
    init_db()
    session = SessionStore().load(args.user)
    session.reset()
    logger.info(f"Reset session for {args.user}")


def main():
    parser = argparse.ArgumentParser(description="Swipe recommendation engine")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Recommend command
    rec_parser = subparsers.add_parser("recommend", help="Show the next recommendations")
    rec_parser.add_argument("user", help="User id")
    rec_parser.add_argument("--page", type=int, default=1, help="Catalog page to start from")
    rec_parser.add_argument("--limit", type=int, default=20, help="Number of items to show")
    rec_parser.add_argument("--shuffle", action="store_true", help="Shuffle the ranked batch")
    rec_parser.add_argument("--languages", type=_split_csv, help="Comma-separated ISO 639-1 codes")
    rec_parser.add_argument("--genres", type=_split_csv, help="Comma-separated genre names")
    rec_parser.add_argument("--content-type", choices=["movies", "series", "both"])
    rec_parser.add_argument("--year-range", type=_parse_year_range, metavar="START-END")
    rec_parser.set_defaults(func=cmd_recommend)

    # Swipe command
    swipe_parser = subparsers.add_parser("swipe", help="Like, pass or save a title")
    swipe_parser.add_argument("user", help="User id")
    swipe_parser.add_argument("content_id", type=int, help="Catalog id")
    swipe_parser.add_argument("action", choices=["like", "pass", "save"])
    swipe_parser.add_argument("--content-type", choices=["movie", "series"],
                              help="Disambiguate ids shared by a movie and a series")
    swipe_parser.set_defaults(func=cmd_swipe)

    undo_parser = subparsers.add_parser("undo", help="Revert the last swipe")
    undo_parser.add_argument("user", help="User id")
    undo_parser.set_defaults(func=cmd_undo)

    watchlist_parser = subparsers.add_parser("watchlist", help="Show or edit the watchlist")
    watchlist_parser.add_argument("user", help="User id")
    watchlist_parser.add_argument("--remove", type=int, metavar="ID", help="Remove a title")
    watchlist_parser.set_defaults(func=cmd_watchlist)

    profile_parser = subparsers.add_parser("profile", help="Show taste profile and stats")
    profile_parser.add_argument("user", help="User id")
    profile_parser.set_defaults(func=cmd_profile)

    similar_users_parser = subparsers.add_parser("similar-users", help="Find users with similar taste")
    similar_users_parser.add_argument("user", help="User id")
    similar_users_parser.add_argument("--min-similarity", type=float, default=DEFAULT_MIN_SIMILARITY)
    similar_users_parser.add_argument("--limit", type=int, default=10)
    similar_users_parser.set_defaults(func=cmd_similar_users)

    import_parser = subparsers.add_parser("import-actions", help="Import peer actions from JSON")
    import_parser.add_argument("file", help="JSON file")
    import_parser.set_defaults(func=cmd_import_actions)

    reset_parser = subparsers.add_parser("reset", help="Forget a user's session")
    reset_parser.add_argument("user", help="User id")
    reset_parser.set_defaults(func=cmd_reset)

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()
