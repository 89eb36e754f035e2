"""Content-addressed blob storage."""

import logging
import sqlite3
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import NotFoundError, StorageError
from .canonical import compute_hash, decode_payload, encode_payload
from .database import StoreHandle

logger = logging.getLogger(__name__)


class ContentKind(str, Enum):
    """What a blob or pointer holds."""

    USER = "user"
    PROJECT = "project"
    FILE = "file"


class ContentStore:
    """Immutable hash -> payload store.

    Blobs are stored once per hash and never updated or deleted.
    """

    def __init__(self, handle: StoreHandle):
        self.handle = handle

    def insert(self, conn: sqlite3.Connection, payload: Any, kind: ContentKind | str) -> str:
        """Write a blob on an existing connection/transaction.

        Returns the hash. A blob whose hash is already present is left alone.
        """
        kind = ContentKind(kind)
        obj_hash = compute_hash(payload)
        encoding, data = encode_payload(payload)

        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO content (hash, kind, encoding, data, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                obj_hash,
                kind.value,
                encoding.value,
                data,
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        if cursor.rowcount:
            logger.debug(f"Stored {kind.value} blob {obj_hash[:12]} ({len(data)} bytes)")
        return obj_hash

    async def put(self, payload: Any, kind: ContentKind | str) -> str:
        """Store a payload and return its hash.

        Idempotent: storing identical payloads returns the same hash and keeps
        a single blob.
        """
        conn = self.handle.conn
        try:
            with conn:
                return self.insert(conn, payload, kind)
        except sqlite3.Error as e:
            raise StorageError("put_content", str(self.handle.db_path), e)

    async def get(self, obj_hash: str) -> Any:
        """Retrieve a payload by hash.

        Raises:
            NotFoundError: If no blob has this hash.
        """
        row = self._row(obj_hash)
        return decode_payload(row["encoding"], row["data"])

    async def get_kind(self, obj_hash: str) -> ContentKind:
        row = self._row(obj_hash)
        return ContentKind(row["kind"])

    async def has(self, obj_hash: str) -> bool:
        """Check if a blob exists in the store."""
        row = self.handle.conn.execute(
            "SELECT 1 FROM content WHERE hash = ?", (obj_hash,)
        ).fetchone()
        return row is not None

    async def count(self) -> int:
        return self.handle.conn.execute("SELECT COUNT(*) FROM content").fetchone()[0]

    def _row(self, obj_hash: str) -> sqlite3.Row:
        try:
            row = self.handle.conn.execute(
                "SELECT kind, encoding, data FROM content WHERE hash = ?",
                (obj_hash,),
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError("get_content", str(self.handle.db_path), e)
        if row is None:
            raise NotFoundError("Content", obj_hash)
        return row
