"""Mutable named pointers to content hashes."""

import logging
import sqlite3
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from ..errors import NotFoundError, StaleWriteError, StorageError
from .canonical import generate_id
from .content_store import ContentKind, ContentStore
from .database import StoreHandle
from .payloads import upgrade_payload
from .version_log import DEFAULT_KEEP_COUNT, VersionLabel, VersionLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Pointer:
    """A user or project: an id pointing at the current content hash."""

    id: str
    kind: ContentKind
    owner_id: str | None
    current_hash: str
    last_modified: datetime
    logical_clock: int
    synced_hash: str | None = None  # hash last confirmed on the remote

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "owner_id": self.owner_id,
            "current_hash": self.current_hash,
            "last_modified": self.last_modified.isoformat(),
            "logical_clock": self.logical_clock,
            "synced_hash": self.synced_hash,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Pointer":
        return cls(
            id=row["id"],
            kind=ContentKind(row["kind"]),
            owner_id=row["owner_id"],
            current_hash=row["current_hash"],
            last_modified=datetime.fromisoformat(row["last_modified"]),
            logical_clock=row["logical_clock"],
            synced_hash=row["synced_hash"],
        )


class PointerStore:
    """Pointer persistence with per-pointer atomic read-modify-write.

    Every write to a pointer happens under that pointer's lock and inside a
    single sqlite transaction together with its content blob and version
    snapshot.
    """

    def __init__(
        self,
        handle: StoreHandle,
        content: ContentStore | None = None,
        versions: VersionLog | None = None,
        keep_session_versions: int = DEFAULT_KEEP_COUNT,
    ):
        self.handle = handle
        self.content = content or ContentStore(handle)
        self.versions = versions or VersionLog(handle, keep_session_versions)
        self.keep_session_versions = keep_session_versions

    # ==================== Reads ====================

    def _fetch(self, pointer_id: str) -> Pointer | None:
        row = self.handle.conn.execute(
            """
            SELECT id, kind, owner_id, current_hash, last_modified, logical_clock, synced_hash
            FROM pointers WHERE id = ?
            """,
            (pointer_id,),
        ).fetchone()
        return Pointer.from_row(row) if row else None

    async def get(self, pointer_id: str) -> Pointer:
        """Get a pointer by id.

        Raises:
            NotFoundError: If the pointer does not exist.
        """
        pointer = self._fetch(pointer_id)
        if pointer is None:
            raise NotFoundError("Pointer", pointer_id)
        return pointer

    async def exists(self, pointer_id: str) -> bool:
        return self._fetch(pointer_id) is not None

    async def get_data(self, pointer_id: str) -> Any:
        """Current payload of a pointer, upgraded to the latest schema."""
        pointer = await self.get(pointer_id)
        payload = await self.content.get(pointer.current_hash)
        return upgrade_payload(pointer.kind, payload)

    async def list_by_owner(self, owner_id: str) -> list[Pointer]:
        cursor = self.handle.conn.execute(
            """
            SELECT id, kind, owner_id, current_hash, last_modified, logical_clock, synced_hash
            FROM pointers WHERE owner_id = ?
            ORDER BY last_modified DESC
            """,
            (owner_id,),
        )
        return [Pointer.from_row(row) for row in cursor]

    async def list_all(self, kind: ContentKind | str | None = None) -> list[Pointer]:
        if kind is None:
            cursor = self.handle.conn.execute(
                """
                SELECT id, kind, owner_id, current_hash, last_modified, logical_clock, synced_hash
                FROM pointers ORDER BY rowid
                """
            )
        else:
            cursor = self.handle.conn.execute(
                """
                SELECT id, kind, owner_id, current_hash, last_modified, logical_clock, synced_hash
                FROM pointers WHERE kind = ? ORDER BY rowid
                """,
                (ContentKind(kind).value,),
            )
        return [Pointer.from_row(row) for row in cursor]

    async def get_current_user(self) -> Pointer | None:
        """The first user pointer on this device, or None."""
        users = await self.list_all(ContentKind.USER)
        return users[0] if users else None

    async def find_by_name(self, owner_id: str, name: str) -> list[Pointer]:
        """Projects of an owner whose payload ``name`` matches."""
        matches = []
        for pointer in await self.list_by_owner(owner_id):
            if pointer.kind is not ContentKind.PROJECT:
                continue
            data = await self.get_data(pointer.id)
            if isinstance(data, dict) and data.get("name") == name:
                matches.append(pointer)
        return matches

    # ==================== Writes ====================

    async def create(
        self,
        pointer_id: str | None,
        owner_id: str | None,
        initial_payload: Any,
        kind: ContentKind | str,
        logical_clock: int = 1,
        last_modified: datetime | None = None,
        synced_hash: str | None = None,
    ) -> Pointer:
        """Store the payload and create a pointer at clock 1.

        A None id gets a fresh ``{kind}_{hex}`` id. Sync passes an explicit
        clock, timestamp and synced hash when creating a pointer that is
        already on the remote.
        """
        kind = ContentKind(kind)
        pointer_id = pointer_id or generate_id(kind.value)
        now = last_modified or datetime.now(timezone.utc)

        async with self.handle.pointer_lock(pointer_id):
            conn = self.handle.conn
            try:
                with conn:
                    obj_hash = self.content.insert(conn, initial_payload, kind)
                    conn.execute(
                        """
                        INSERT INTO pointers (
                            id, kind, owner_id, current_hash, last_modified, logical_clock,
                            synced_hash
                        ) VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            pointer_id,
                            kind.value,
                            owner_id,
                            obj_hash,
                            now.isoformat(),
                            logical_clock,
                            synced_hash,
                        ),
                    )
                    self.versions.insert(conn, pointer_id, obj_hash, VersionLabel.SESSION)
            except sqlite3.Error as e:
                raise StorageError("create_pointer", pointer_id, e)

        logger.debug(f"Created {kind.value} pointer {pointer_id} at {obj_hash[:12]}")
        return Pointer(
            id=pointer_id,
            kind=kind,
            owner_id=owner_id,
            current_hash=obj_hash,
            last_modified=now,
            logical_clock=logical_clock,
            synced_hash=synced_hash,
        )

    async def update(self, pointer_id: str, new_payload: Any) -> Pointer:
        """Point at a new payload and bump the logical clock by one.

        The new hash is snapshotted as a session version and old session
        versions are pruned in the same transaction.

        Raises:
            NotFoundError: If the pointer does not exist.
        """
        async with self.handle.pointer_lock(pointer_id):
            current = self._fetch(pointer_id)
            if current is None:
                raise NotFoundError("Pointer", pointer_id)

            conn = self.handle.conn
            try:
                with conn:
                    obj_hash = self.content.insert(conn, new_payload, current.kind)
                    updated = replace(
                        current,
                        current_hash=obj_hash,
                        last_modified=datetime.now(timezone.utc),
                        logical_clock=current.logical_clock + 1,
                    )
                    self._write(conn, updated)
                    self.versions.insert(conn, pointer_id, obj_hash, VersionLabel.SESSION)
                    self.versions.prune_on(conn, pointer_id, self.keep_session_versions)
            except sqlite3.Error as e:
                raise StorageError("update_pointer", pointer_id, e)

        logger.debug(
            f"Updated {pointer_id} to {obj_hash[:12]} clock={updated.logical_clock}"
        )
        return updated

    async def adopt(
        self,
        pointer_id: str,
        obj_hash: str,
        logical_clock: int,
        last_modified: datetime,
        expected_hash: str,
        demoted_label: VersionLabel | str = VersionLabel.SESSION,
        synced_hash: str | None = None,
    ) -> Pointer:
        """Take over a state pulled from the remote.

        The local hash is snapshotted (with demoted_label) before the pointer
        moves, so it stays in the history. The clock becomes
        max(local, logical_clock); it never goes down. The blob for obj_hash
        must already be in the content store. synced_hash, when given, is
        recorded as the hash now confirmed on the remote.

        Raises:
            NotFoundError: If the pointer or the blob does not exist.
            StaleWriteError: If the pointer no longer points at expected_hash.
        """
        if not await self.content.has(obj_hash):
            raise NotFoundError("Content", obj_hash)

        async with self.handle.pointer_lock(pointer_id):
            current = self._fetch(pointer_id)
            if current is None:
                raise NotFoundError("Pointer", pointer_id)
            if current.current_hash != expected_hash:
                raise StaleWriteError(pointer_id, expected_hash, current.current_hash)

            adopted = replace(
                current,
                current_hash=obj_hash,
                last_modified=last_modified,
                logical_clock=max(current.logical_clock, logical_clock),
                synced_hash=synced_hash or current.synced_hash,
            )
            conn = self.handle.conn
            try:
                with conn:
                    if current.current_hash != obj_hash:
                        self.versions.insert(conn, pointer_id, current.current_hash, demoted_label)
                    self._write(conn, adopted)
                    self.versions.insert(conn, pointer_id, obj_hash, VersionLabel.SESSION)
                    self.versions.prune_on(conn, pointer_id, self.keep_session_versions)
            except sqlite3.Error as e:
                raise StorageError("adopt_pointer", pointer_id, e)

        logger.debug(
            f"Adopted {obj_hash[:12]} for {pointer_id} clock={adopted.logical_clock}"
        )
        return adopted

    async def delete(self, pointer_id: str) -> bool:
        """Delete a pointer and all of its versions. Blobs stay.

        Returns True if the pointer existed.
        """
        async with self.handle.pointer_lock(pointer_id):
            conn = self.handle.conn
            try:
                with conn:
                    cursor = conn.execute("DELETE FROM pointers WHERE id = ?", (pointer_id,))
                    removed = cursor.rowcount > 0
                    versions = self.versions.delete_on(conn, pointer_id)
            except sqlite3.Error as e:
                raise StorageError("delete_pointer", pointer_id, e)

        if removed:
            logger.info(f"Deleted pointer {pointer_id} and {versions} versions")
        return removed

    async def mark_synced(self, pointer_id: str, obj_hash: str) -> None:
        """Record obj_hash as the state last confirmed on the remote.

        Leaves the current hash and clock alone. No-op for unknown pointers.
        """
        conn = self.handle.conn
        try:
            with conn:
                conn.execute(
                    "UPDATE pointers SET synced_hash = ? WHERE id = ?",
                    (obj_hash, pointer_id),
                )
        except sqlite3.Error as e:
            raise StorageError("mark_synced", pointer_id, e)

    def _write(self, conn: sqlite3.Connection, pointer: Pointer) -> None:
        conn.execute(
            """
            UPDATE pointers
            SET current_hash = ?, last_modified = ?, logical_clock = ?, synced_hash = ?
            WHERE id = ?
            """,
            (
                pointer.current_hash,
                pointer.last_modified.isoformat(),
                pointer.logical_clock,
                pointer.synced_hash,
                pointer.id,
            ),
        )

    async def get_stats(self) -> dict[str, Any]:
        """Counts of pointers by kind, versions and blobs."""
        conn = self.handle.conn
        stats: dict[str, Any] = {}

        cursor = conn.execute("SELECT kind, COUNT(*) FROM pointers GROUP BY kind")
        stats["pointers_by_kind"] = {row[0]: row[1] for row in cursor}

        cursor = conn.execute("SELECT label, COUNT(*) FROM versions GROUP BY label")
        stats["versions_by_label"] = {row[0]: row[1] for row in cursor}

        stats["content_count"] = await self.content.count()

        size = self.handle.db_size_mb()
        if size is not None:
            stats["db_size_mb"] = size

        return stats
