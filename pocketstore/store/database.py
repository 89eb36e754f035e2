"""SQLite store handle shared by the content, pointer and version stores."""

import asyncio
import logging
import sqlite3
from pathlib import Path

from ..errors import StorageError

logger = logging.getLogger(__name__)

# SQL schema for the local store
SCHEMA = """
-- Content blobs: immutable, keyed by SHA-256 of the canonical payload
CREATE TABLE IF NOT EXISTS content (
    hash TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    encoding TEXT NOT NULL,
    data BLOB NOT NULL,
    created_at TEXT NOT NULL
);

-- Pointers: mutable named references to a content hash
CREATE TABLE IF NOT EXISTS pointers (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    owner_id TEXT,
    current_hash TEXT NOT NULL,
    last_modified TEXT NOT NULL,
    logical_clock INTEGER NOT NULL CHECK (logical_clock >= 1),
    synced_hash TEXT
);

CREATE INDEX IF NOT EXISTS idx_pointers_owner ON pointers(owner_id);
CREATE INDEX IF NOT EXISTS idx_pointers_kind ON pointers(kind);

-- Versions: append-only history of pointer hashes
CREATE TABLE IF NOT EXISTS versions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pointer_id TEXT NOT NULL,
    hash TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    label TEXT NOT NULL CHECK (label IN ('session', 'checkpoint'))
);

CREATE INDEX IF NOT EXISTS idx_versions_pointer ON versions(pointer_id, timestamp);
"""


def _add_synced_hash_column_if_missing(conn: sqlite3.Connection) -> None:
    """Add pointers.synced_hash to databases created before it existed."""
    rows = conn.execute("PRAGMA table_info(pointers)").fetchall()
    # SQLite returns (cid, name, type, notnull, dflt_value, pk)
    if any(row[1] == "synced_hash" for row in rows):
        return
    conn.execute("ALTER TABLE pointers ADD COLUMN synced_hash TEXT")


class StoreHandle:
    """Explicit handle to the local database.

    Owns the sqlite connection and the per-pointer mutation locks. Open it
    with connect() (or use it as a context manager) and pass it to every
    store; nothing here is global.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the handle.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None
        self._locks: dict[str, asyncio.Lock] = {}

    def connect(self) -> None:
        """Open the connection and create the schema. Safe to call twice."""
        if self._conn is not None:
            return

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)
            _add_synced_hash_column_if_missing(self._conn)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError("connect", str(self.db_path), e)

        logger.info(f"StoreHandle connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("StoreHandle connection closed")

    def __enter__(self) -> "StoreHandle":
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        """The open connection; connects lazily."""
        if self._conn is None:
            self.connect()
        return self._conn

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def pointer_lock(self, pointer_id: str) -> asyncio.Lock:
        """Lock serializing local mutations of one pointer."""
        lock = self._locks.get(pointer_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[pointer_id] = lock
        return lock

    def is_busy(self, pointer_id: str) -> bool:
        """True while a local mutation of the pointer is in flight."""
        lock = self._locks.get(pointer_id)
        return lock is not None and lock.locked()

    def db_size_mb(self) -> float | None:
        if isinstance(self.db_path, Path) and self.db_path.exists():
            return round(self.db_path.stat().st_size / (1024 * 1024), 2)
        return None
