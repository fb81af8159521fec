import importlib
import sys
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from swipr_rec.catalog import CatalogPage  # noqa: E402
from swipr_rec.collaborative import PeerAction, PeerStoreError  # noqa: E402
from swipr_rec.models import Action, ContentItem  # noqa: E402


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("SWIPR_DB", str(db_path))
    import swipr_rec.config as config

    importlib.reload(config)
    return config


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload config/database modules with a temp DB and cleanly close the pool after use.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("SWIPR_DB", str(db_path))

    import swipr_rec.config as config
    import swipr_rec.database as database

    importlib.reload(config)
    importlib.reload(database)
    database.init_db()

    yield database
    database.close_pool()


def _item(content_id, genres=("Drama",), year=2015, rating=7.0, language="en", **kwargs):
    kwargs.setdefault("title", f"Title {content_id}")
    kwargs.setdefault("poster_path", f"/poster{content_id}.jpg")
    return ContentItem(
        id=content_id,
        genres=tuple(genres),
        release_date=f"{year}-06-01" if year else "",
        rating=rating,
        language=language,
        **kwargs,
    )


@pytest.fixture
def make_item():
    """Factory for ContentItem with sensible defaults."""
    return _item


class InMemoryPeerStore:
    """Peer store over a list of (peer_id, content_id, action) rows, in insertion order."""

    def __init__(self, rows=None):
        self.rows = [(p, c, Action.parse(a)) for p, c, a in rows or []]
        self.reads = 0

    def add(self, peer_id, content_id, action):
        self.rows.append((peer_id, content_id, Action.parse(action)))

    def _latest(self, rows):
        latest = {}
        for peer_id, content_id, action in rows:
            latest[(peer_id, content_id)] = PeerAction(peer_id, content_id, action)
        return list(latest.values())

    async def actions_for(self, content_id):
        self.reads += 1
        return self._latest(r for r in self.rows if r[1] == content_id)

    async def actions_by(self, peer_id):
        self.reads += 1
        return self._latest(r for r in self.rows if r[0] == peer_id)

    async def record_action(self, user_id, content_id, action):
        self.add(user_id, content_id, action)


class FailingPeerStore:
    def __init__(self):
        self.attempts = 0

    async def _fail(self, *args):
        self.attempts += 1
        raise PeerStoreError("peer store unreachable")

    actions_for = _fail
    actions_by = _fail
    record_action = _fail


class FakeCatalog:
    """
    Catalog serving fixed pages. `pages` maps page number to items; pages past
    `total_pages` report has_more=False.
    """

    def __init__(self, pages=None, curated=None, total_pages=None, error=None):
        self.pages = pages or {}
        self.curated = curated or []
        self.total_pages = total_pages if total_pages is not None else max(self.pages or {1: None})
        self.error = error
        self.discover_calls = []
        self.curated_calls = 0

    async def discover(self, content_type, languages, genres=None, year_range=None, page=1, quality_floor=None):
        self.discover_calls.append(page)
        if self.error:
            return CatalogPage(error=self.error)
        return CatalogPage(items=list(self.pages.get(page, [])), has_more=page < self.total_pages)

    async def curated_pool(self, content_type, languages):
        self.curated_calls += 1
        if self.error:
            return CatalogPage(error=self.error)
        return CatalogPage(items=list(self.curated))

    async def fetch_item(self, content_id, content_type="movie"):
        for items in [self.curated, *self.pages.values()]:
            for item in items:
                if item.id == content_id:
                    return item
        return None


@pytest.fixture
def peer_store():
    return InMemoryPeerStore()


@pytest.fixture
def failing_peer_store():
    return FailingPeerStore()


@pytest.fixture
def fake_catalog_factory():
    return FakeCatalog
