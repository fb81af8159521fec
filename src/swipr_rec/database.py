import sqlite3
import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from .config import DB_PATH

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Thread-safe SQLite connection pool.

    SQLite connections must not be shared across threads, so the pool hands
    out one connection per thread and tracks how deeply each thread has nested
    get_db() so only the outermost context commits or rolls back.
    """

    def __init__(self, db_path, max_size: int = 20):
        self._db_path = db_path
        self._max_size = max_size

        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._transaction_depth: dict[int, int] = {}

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA cache_size = -16000")  # 16MB cache

        return conn

    def _drop_dead_threads(self):
        alive_threads = {t.ident for t in threading.enumerate()}
        for thread_id in set(self._connections) - alive_threads:
            conn = self._connections.pop(thread_id)
            self._transaction_depth.pop(thread_id, None)
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing connection for thread {thread_id}: {e}")
            logger.debug(f"Dropped connection for finished thread {thread_id}")

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection for the current thread, creating if necessary."""
        thread_id = threading.get_ident()

        with self._lock:
            conn = self._connections.get(thread_id)
            if conn is None:
                if len(self._connections) >= self._max_size:
                    self._drop_dead_threads()
                    if len(self._connections) >= self._max_size:
                        raise RuntimeError(
                            f"Connection pool exhausted ({self._max_size} connections)"
                        )
                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._transaction_depth[thread_id] = 0
                logger.debug(f"Created connection for thread {thread_id} (pool size: {len(self._connections)})")
            return conn

    def get_transaction_depth(self) -> int:
        return self._transaction_depth.get(threading.get_ident(), 0)

    def increment_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = self._transaction_depth.get(thread_id, 0) + 1

    def decrement_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._transaction_depth.get(thread_id, 1)
            self._transaction_depth[thread_id] = max(0, depth - 1)

    def close_all(self):
        """Close all connections (call on application shutdown)."""
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")
            self._connections.clear()
            self._transaction_depth.clear()
            logger.debug("Connection pool closed")


# Global pool instance
_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def init_db() -> None:
    DB_PATH.parent.mkdir(exist_ok=True, parents=True)
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS sessions (
                user_id TEXT PRIMARY KEY,
                session_data TEXT NOT NULL,   -- JSON document
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS peer_actions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                content_id INTEGER NOT NULL,
                action TEXT NOT NULL,         -- like | pass | save_for_later
                created_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_peer_actions_content ON peer_actions(content_id, user_id);
            CREATE INDEX IF NOT EXISTS idx_peer_actions_user ON peer_actions(user_id);

            CREATE TABLE IF NOT EXISTS content_items (
                id INTEGER NOT NULL,
                content_type TEXT NOT NULL,
                payload TEXT NOT NULL,        -- JSON ContentItem
                fetched_at TEXT,
                PRIMARY KEY (id, content_type)
            );
        """)


def _get_pool() -> ConnectionPool:
    """Get or create the global connection pool."""
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                DB_PATH.parent.mkdir(exist_ok=True, parents=True)
                _pool = ConnectionPool(DB_PATH)
    return _pool


@contextmanager
def get_db(read_only: bool = False):
    """
    Get database connection with proper transaction handling.

    Args:
        read_only: If True, skip commit on exit

    Only the outermost context commits or rolls back; nested calls share it.
    """
    pool = _get_pool()
    conn = pool.get_connection()

    is_outermost = pool.get_transaction_depth() == 0
    pool.increment_transaction_depth()

    try:
        yield conn
        if is_outermost and not read_only:
            conn.commit()
    except Exception:
        if is_outermost:
            conn.rollback()
        raise
    finally:
        pool.decrement_transaction_depth()


def close_pool():
    """Close the connection pool. Call on application shutdown."""
    global _pool
    if _pool is not None:
        _pool.close_all()
        _pool = None


def load_json(val, default=None):
    """Safely load JSON from a db field, returning `default` (or []) when unusable."""
    if default is None:
        default = []
    if not val:
        return default
    if isinstance(val, (list, dict)):
        return val
    try:
        return json.loads(val)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse JSON '{str(val)[:50]}...': {e}")
        return default


# --- sessions ---------------------------------------------------------------

def load_session_blob(user_id: str) -> str | None:
    with get_db(read_only=True) as conn:
        row = conn.execute(
            "SELECT session_data FROM sessions WHERE user_id = ?", (user_id,)
        ).fetchone()
    return row['session_data'] if row else None


def save_session_blob(user_id: str, session_data: dict) -> None:
    """Replace the stored session document for a user."""
    with get_db() as conn:
        conn.execute("""
            INSERT OR REPLACE INTO sessions (user_id, session_data, updated_at)
            VALUES (?, ?, ?)
        """, (user_id, json.dumps(session_data), datetime.now().isoformat()))


def delete_session(user_id: str) -> None:
    with get_db() as conn:
        conn.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))


# --- peer actions -----------------------------------------------------------

def insert_peer_action(user_id: str, content_id: int, action: str, created_at: str | None = None) -> None:
    with get_db() as conn:
        conn.execute("""
            INSERT INTO peer_actions (user_id, content_id, action, created_at)
            VALUES (?, ?, ?, ?)
        """, (user_id, content_id, action, created_at or datetime.now().isoformat()))


def insert_peer_actions_batch(rows: list[tuple[str, int, str]]) -> int:
    """Bulk insert (user_id, content_id, action) rows in one transaction."""
    now = datetime.now().isoformat()
    with get_db() as conn:
        conn.executemany("""
            INSERT INTO peer_actions (user_id, content_id, action, created_at)
            VALUES (?, ?, ?, ?)
        """, [(u, c, a, now) for u, c, a in rows])
    return len(rows)


def load_actions_for_content(content_id: int) -> list[dict]:
    """Latest action of every user on one content item."""
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT user_id, content_id, action FROM peer_actions
            WHERE id IN (
                SELECT MAX(id) FROM peer_actions
                WHERE content_id = ?
                GROUP BY user_id
            )
        """, (content_id,)).fetchall()
    return [dict(row) for row in rows]


def load_actions_by_user(user_id: str) -> list[dict]:
    """Latest action of one user on every content item they touched."""
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT user_id, content_id, action FROM peer_actions
            WHERE id IN (
                SELECT MAX(id) FROM peer_actions
                WHERE user_id = ?
                GROUP BY content_id
            )
            ORDER BY id
        """, (user_id,)).fetchall()
    return [dict(row) for row in rows]


def count_peer_actions() -> dict:
    with get_db(read_only=True) as conn:
        row = conn.execute("""
            SELECT COUNT(*) AS actions, COUNT(DISTINCT user_id) AS users
            FROM peer_actions
        """).fetchone()
    return {'actions': row['actions'], 'users': row['users']}


# --- content cache ----------------------------------------------------------

def cache_content_items(items: list[dict]) -> None:
    """Store catalog items so later commands can resolve them by id."""
    if not items:
        return
    now = datetime.now().isoformat()
    with get_db() as conn:
        conn.executemany("""
            INSERT OR REPLACE INTO content_items (id, content_type, payload, fetched_at)
            VALUES (?, ?, ?, ?)
        """, [(item['id'], item.get('content_type', 'movie'), json.dumps(item), now) for item in items])


def load_content_item(content_id: int, content_type: str | None = None) -> dict | None:
    with get_db(read_only=True) as conn:
        if content_type:
            row = conn.execute(
                "SELECT payload FROM content_items WHERE id = ? AND content_type = ?",
                (content_id, content_type),
            ).fetchone()
        else:
            row = conn.execute(
                "SELECT payload FROM content_items WHERE id = ? ORDER BY fetched_at DESC LIMIT 1",
                (content_id,),
            ).fetchone()
    if row is None:
        return None
    payload = load_json(row['payload'], default={})
    return payload if isinstance(payload, dict) and 'id' in payload else None
