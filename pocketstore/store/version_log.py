"""Append-only version history of pointer hashes."""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import NotFoundError, StorageError
from .database import StoreHandle

logger = logging.getLogger(__name__)

DEFAULT_KEEP_COUNT = 10


class VersionLabel(str, Enum):
    """Session versions are pruned; checkpoints are kept forever."""

    SESSION = "session"
    CHECKPOINT = "checkpoint"


@dataclass
class Version:
    """A snapshot of a pointer's hash at a point in time."""

    id: int
    pointer_id: str
    hash: str
    timestamp: datetime
    label: VersionLabel

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pointer_id": self.pointer_id,
            "hash": self.hash,
            "timestamp": self.timestamp.isoformat(),
            "label": self.label.value,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Version":
        return cls(
            id=row["id"],
            pointer_id=row["pointer_id"],
            hash=row["hash"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            label=VersionLabel(row["label"]),
        )


class VersionLog:
    """Per-pointer hash history with session retention."""

    def __init__(self, handle: StoreHandle, keep_count: int = DEFAULT_KEEP_COUNT):
        self.handle = handle
        self.keep_count = keep_count

    # Connection-level helpers, used inside pointer store transactions

    def insert(
        self,
        conn: sqlite3.Connection,
        pointer_id: str,
        obj_hash: str,
        label: VersionLabel | str = VersionLabel.SESSION,
        timestamp: datetime | None = None,
    ) -> Version:
        label = VersionLabel(label)
        timestamp = timestamp or datetime.now(timezone.utc)
        cursor = conn.execute(
            """
            INSERT INTO versions (pointer_id, hash, timestamp, label)
            VALUES (?, ?, ?, ?)
            """,
            (pointer_id, obj_hash, timestamp.isoformat(), label.value),
        )
        return Version(
            id=cursor.lastrowid,
            pointer_id=pointer_id,
            hash=obj_hash,
            timestamp=timestamp,
            label=label,
        )

    def prune_on(self, conn: sqlite3.Connection, pointer_id: str, keep_count: int) -> int:
        rows = conn.execute(
            """
            SELECT id FROM versions
            WHERE pointer_id = ? AND label = 'session'
            ORDER BY timestamp DESC, id DESC
            """,
            (pointer_id,),
        ).fetchall()
        stale = [row["id"] for row in rows[max(keep_count, 0):]]
        if not stale:
            return 0

        placeholders = ",".join("?" * len(stale))
        conn.execute(f"DELETE FROM versions WHERE id IN ({placeholders})", stale)
        return len(stale)

    def delete_on(self, conn: sqlite3.Connection, pointer_id: str) -> int:
        cursor = conn.execute("DELETE FROM versions WHERE pointer_id = ?", (pointer_id,))
        return cursor.rowcount

    # Public operations

    async def snapshot(
        self,
        pointer_id: str,
        obj_hash: str,
        label: VersionLabel | str = VersionLabel.SESSION,
    ) -> Version:
        """Append a version. Always succeeds, even if the hash is unchanged."""
        conn = self.handle.conn
        try:
            with conn:
                version = self.insert(conn, pointer_id, obj_hash, label)
        except sqlite3.Error as e:
            raise StorageError("snapshot", pointer_id, e)

        logger.debug(
            f"Snapshot {version.label.value} of {pointer_id} at {obj_hash[:12]}"
        )
        return version

    async def checkpoint(self, pointer_id: str) -> Version:
        """Snapshot the pointer's current hash as a permanent checkpoint.

        Raises:
            NotFoundError: If the pointer does not exist.
        """
        row = self.handle.conn.execute(
            "SELECT current_hash FROM pointers WHERE id = ?", (pointer_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError("Pointer", pointer_id)
        return await self.snapshot(pointer_id, row["current_hash"], VersionLabel.CHECKPOINT)

    async def history_hashes(self, pointer_id: str, limit: int | None = None) -> list[str]:
        """Distinct hashes from the pointer's history, newest first."""
        hashes: list[str] = []
        for version in await self.list(pointer_id):
            if version.hash not in hashes:
                hashes.append(version.hash)
            if limit is not None and len(hashes) >= limit:
                break
        return hashes

    async def prune(self, pointer_id: str, keep_count: int | None = None) -> int:
        """Delete all but the newest keep_count session versions.

        Checkpoints are never deleted. Returns the number of versions removed.
        """
        keep = self.keep_count if keep_count is None else keep_count
        conn = self.handle.conn
        try:
            with conn:
                deleted = self.prune_on(conn, pointer_id, keep)
        except sqlite3.Error as e:
            raise StorageError("prune", pointer_id, e)

        if deleted > 0:
            logger.info(f"Pruned {deleted} session versions of {pointer_id}")
        return deleted

    async def list(self, pointer_id: str) -> list[Version]:
        """All versions of a pointer, newest first."""
        cursor = self.handle.conn.execute(
            """
            SELECT id, pointer_id, hash, timestamp, label
            FROM versions
            WHERE pointer_id = ?
            ORDER BY timestamp DESC, id DESC
            """,
            (pointer_id,),
        )
        return [Version.from_row(row) for row in cursor]
