"""Sync engine: reconciles the local store with the remote key-value store.

Per pointer, each pass walks a small state machine:

    Unsynced -> Pushing -> Reconciled
    Unsynced -> Pulling -> Reconciled
    Unsynced -> Conflict -> Resolved  (after an explicit decision)
    any      -> Failed                (retried on the next pass)

Content blobs always go up before the record that references them, and
nothing local changes until the remote response has been verified.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import (
    ConflictUnresolved,
    IntegrityError,
    MigrationError,
    NetworkError,
    NotFoundError,
    PocketStoreError,
    StaleWriteError,
    StorageError,
)
from ..store.canonical import compute_hash, extract_references, generate_id, is_hash
from ..store.content_store import ContentKind
from ..store.pointer_store import Pointer, PointerStore
from ..store.version_log import VersionLabel
from .keys import Identity, parse_latest_key, version_name
from .remote_client import RemoteStoreClient
from .resolver import (
    Action,
    ConflictReport,
    PointerSnapshot,
    local_dominates,
    remote_dominates,
    resolve,
)

logger = logging.getLogger(__name__)


class PointerSyncState(Enum):
    """Where a pointer ended up after a sync pass."""

    UNSYNCED = "unsynced"
    PUSHING = "pushing"
    PULLING = "pulling"
    RECONCILED = "reconciled"
    CONFLICT = "conflict"
    RESOLVED = "resolved"
    FAILED = "failed"
    DEFERRED = "deferred"  # busy locally; retried on the next pass


@dataclass
class PointerSyncResult:
    """Outcome of syncing one pointer."""

    pointer_id: str
    state: PointerSyncState
    action: str | None = None  # "push", "pull", "import", "none" or a conflict action
    error: Exception | None = None
    conflict: ConflictReport | None = None
    renamed_to: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pointer_id": self.pointer_id,
            "state": self.state.value,
            "action": self.action,
            "error": str(self.error) if self.error else None,
            "conflict": self.conflict.to_dict() if self.conflict else None,
            "renamed_to": self.renamed_to,
        }


@dataclass
class SyncReport:
    """Result of a full account sync pass."""

    email: str
    results: list[PointerSyncResult] = field(default_factory=list)
    migrated_keys: int = 0
    error: Exception | None = None
    timestamp: datetime | None = None

    def by_state(self, state: PointerSyncState) -> list[PointerSyncResult]:
        return [r for r in self.results if r.state is state]

    @property
    def conflicts(self) -> list[PointerSyncResult]:
        return self.by_state(PointerSyncState.CONFLICT)

    @property
    def failed(self) -> list[PointerSyncResult]:
        return self.by_state(PointerSyncState.FAILED)

    @property
    def success(self) -> bool:
        return self.error is None and not self.failed

    def result_for(self, pointer_id: str) -> PointerSyncResult | None:
        for result in self.results:
            if result.pointer_id == pointer_id:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "success": self.success,
            "migrated_keys": self.migrated_keys,
            "error": str(self.error) if self.error else None,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class RemotePointer:
    """A pointer record as found on the remote."""

    snapshot: PointerSnapshot
    kind: ContentKind
    files: list[str]
    version: str | None = None
    markers: list[str] = field(default_factory=list)


@dataclass
class _PendingConflict:
    report: ConflictReport
    identity: Identity
    kind: ContentKind
    remote: RemotePointer
    blobs: dict[str, tuple[Any, ContentKind]]
    renamed: Pointer | None = None  # fixed on the first rename attempt


@dataclass
class SyncState:
    """In-memory sync bookkeeping; rebuilt from scratch on restart.

    The hash last confirmed on the remote is kept per pointer in the local
    store (Pointer.synced_hash), so it survives restarts.
    """

    last_sync: datetime | None = None
    pending: set[str] = field(default_factory=set)
    migrated: set[str] = field(default_factory=set)
    conflicts: dict[str, _PendingConflict] = field(default_factory=dict)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or epoch milliseconds into an aware datetime."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise ValueError(f"Unrecognized timestamp: {value!r}")


class SyncEngine:
    """Orchestrates push, pull, migration and conflict handling.

    Operations on the same pointer are serialized; different pointers never
    block each other. A pointer with a local mutation in flight is deferred.
    """

    def __init__(
        self,
        pointers: PointerStore,
        remote: RemoteStoreClient,
        ancestry_depth: int = 20,
    ):
        """Initialize the sync engine.

        Args:
            pointers: Local pointer store (gives access to content and versions).
            remote: Client for the remote key-value service.
            ancestry_depth: How many prior hashes to publish with each record.
        """
        self.pointers = pointers
        self.content = pointers.content
        self.versions = pointers.versions
        self.remote = remote
        self.ancestry_depth = ancestry_depth
        self.state = SyncState()
        self._sync_locks: dict[str, asyncio.Lock] = {}

    def _sync_lock(self, pointer_id: str) -> asyncio.Lock:
        lock = self._sync_locks.get(pointer_id)
        if lock is None:
            lock = asyncio.Lock()
            self._sync_locks[pointer_id] = lock
        return lock

    # ==================== Migration ====================

    async def migrate_legacy(self, identity: Identity) -> int:
        """Copy the legacy ``user/{email}/`` key space to the domain layout.

        Runs at most once per account per engine. Copies only when the new
        namespace is empty or holds nothing but earlier copies, so re-running
        leaves the remote key set unchanged. Legacy keys are never deleted.

        Returns:
            Number of keys copied.

        Raises:
            MigrationError: If the remote could not be read or written.
        """
        if identity.email in self.state.migrated:
            return 0

        copied = 0
        try:
            legacy_keys = await self.remote.list(identity.legacy_prefix)
            if legacy_keys:
                current_keys = set(await self.remote.list(identity.prefix))
                mapping = {identity.to_current(key): key for key in legacy_keys}

                if current_keys - set(mapping):
                    logger.info(
                        f"Skipping legacy migration for {identity.email}: "
                        f"domain namespace already populated"
                    )
                else:
                    for new_key, old_key in mapping.items():
                        if new_key in current_keys:
                            continue
                        value = await self.remote.get(old_key)
                        if value is None:
                            continue
                        await self.remote.put(new_key, value)
                        copied += 1
        except NetworkError as e:
            raise MigrationError(identity.email, e)

        self.state.migrated.add(identity.email)
        if copied:
            logger.info(f"Migrated {copied} legacy keys for {identity.email}")
        return copied

    # ==================== Remote reads ====================

    def _parse_record(self, record: dict[str, Any], kind: ContentKind) -> RemotePointer:
        if not isinstance(record, dict):
            raise IntegrityError("record", None, "remote record is not an object")
        try:
            obj_hash = record["hash"]
            if not is_hash(obj_hash):
                raise ValueError(f"bad hash {obj_hash!r}")
            snapshot = PointerSnapshot(
                id=str(record["id"]),
                hash=obj_hash,
                logical_clock=int(record["logical_clock"]),
                last_modified=parse_timestamp(record["last_modified"]),
                ancestors=tuple(h for h in record.get("ancestors", []) if is_hash(h)),
            )
            files = [h for h in record.get("files", []) if is_hash(h)]
            kind = ContentKind(record.get("kind", kind.value))
        except (KeyError, TypeError, ValueError) as e:
            raise IntegrityError(str(record.get("hash")), None, f"malformed record: {e}")

        return RemotePointer(snapshot=snapshot, kind=kind, files=files)

    async def _fetch_profile(self, identity: Identity) -> RemotePointer | None:
        record = await self.remote.get_json(identity.profile_key())
        if record is None:
            return None
        return self._parse_record(record, ContentKind.USER)

    async def _list_remote_projects(self, identity: Identity) -> dict[str, list[str]]:
        """Map of project id -> latest-marker versions on the remote."""
        projects: dict[str, list[str]] = {}
        for key in await self.remote.list(identity.latest_prefix()):
            parsed = parse_latest_key(identity, key)
            if parsed is None:
                logger.warning(f"Ignoring unexpected key {key}")
                continue
            project_id, version = parsed
            projects.setdefault(project_id, []).append(version)
        return projects

    async def _fetch_project(
        self,
        identity: Identity,
        project_id: str,
        markers: list[str],
    ) -> RemotePointer | None:
        """Read every latest marker's record and keep the newest one."""
        best: RemotePointer | None = None
        for version in markers:
            record = await self.remote.get_json(identity.version_key(version))
            if record is None:
                logger.warning(f"Dangling latest marker {version} for {project_id}")
                continue

            if version_name(compute_hash(record)) != version:
                raise IntegrityError(version, version_name(compute_hash(record)), "version record")

            candidate = self._parse_record(record, ContentKind.PROJECT)
            if candidate.snapshot.id != project_id:
                raise IntegrityError(version, None, f"record belongs to {candidate.snapshot.id}")
            candidate.version = version

            if best is None or (
                candidate.snapshot.logical_clock,
                candidate.snapshot.last_modified,
            ) > (best.snapshot.logical_clock, best.snapshot.last_modified):
                best = candidate

        if best is not None:
            best.markers = list(markers)
        return best

    async def _fetch_remote(
        self,
        identity: Identity,
        pointer: Pointer,
        remote_projects: dict[str, list[str]] | None,
    ) -> RemotePointer | None:
        if pointer.kind is ContentKind.USER:
            return await self._fetch_profile(identity)
        if remote_projects is None:
            markers = [
                parsed[1]
                for key in await self.remote.list(identity.latest_prefix(pointer.id))
                if (parsed := parse_latest_key(identity, key))
            ]
        else:
            markers = remote_projects.get(pointer.id, [])
        if not markers:
            return None
        return await self._fetch_project(identity, pointer.id, markers)

    async def _download(self, remote: RemotePointer) -> dict[str, tuple[Any, ContentKind]]:
        """Fetch and verify the pointer blob and every file it references.

        Raises:
            IntegrityError: If any blob is missing or does not match its hash.
        """
        blobs: dict[str, tuple[Any, ContentKind]] = {}
        for obj_hash in [remote.snapshot.hash, *remote.files]:
            if obj_hash in blobs:
                continue
            if await self.content.has(obj_hash):
                blobs[obj_hash] = (await self.content.get(obj_hash), await self.content.get_kind(obj_hash))
                continue
            fetched = await self.remote.get_blob(obj_hash)
            if fetched is None:
                raise IntegrityError(obj_hash, None, "blob missing on remote")
            blobs[obj_hash] = fetched
        return blobs

    async def _store_blobs(self, blobs: dict[str, tuple[Any, ContentKind]]) -> None:
        for obj_hash, (payload, kind) in blobs.items():
            stored = await self.content.put(payload, kind)
            if stored != obj_hash:
                raise IntegrityError(obj_hash, stored, "stored blob")

    # ==================== Remote writes ====================

    def _ancestors(
        self,
        pointer: Pointer,
        history: list[str],
        existing: RemotePointer | None,
    ) -> list[str]:
        """Prior hashes to publish with a record, newest first.

        Local history only reaches back a few sessions, so the list carries
        on with the remote state being replaced and the ancestors it already
        published. Local history is capped one short of ancestry_depth so the
        replaced state always makes the cut.
        """
        if existing is not None:
            inherited = [existing.snapshot.hash, *existing.snapshot.ancestors]
        elif pointer.synced_hash:
            inherited = [pointer.synced_hash]
        else:
            inherited = []

        ancestors: list[str] = []
        for obj_hash in [*history[: max(self.ancestry_depth - 1, 0)], *inherited]:
            if obj_hash != pointer.current_hash and obj_hash not in ancestors:
                ancestors.append(obj_hash)
        return ancestors[: self.ancestry_depth]

    async def _push(
        self,
        pointer: Pointer,
        identity: Identity,
        existing: RemotePointer | None,
    ) -> None:
        """Upload blobs, then the record that references them."""
        payload = await self.content.get(pointer.current_hash)

        files = []
        for ref in extract_references(payload):
            if ref != pointer.current_hash and await self.content.has(ref):
                files.append(ref)

        for ref in files:
            await self.remote.put_blob(ref, await self.content.get(ref), await self.content.get_kind(ref))
        await self.remote.put_blob(pointer.current_hash, payload, pointer.kind)

        history = await self.versions.history_hashes(pointer.id, limit=self.ancestry_depth + 1)
        ancestors = self._ancestors(pointer, history, existing)

        record = {
            "id": pointer.id,
            "kind": pointer.kind.value,
            "hash": pointer.current_hash,
            "logical_clock": pointer.logical_clock,
            "last_modified": pointer.last_modified.isoformat(),
            "ancestors": ancestors,
            "files": files,
        }

        if pointer.kind is ContentKind.USER:
            await self.remote.put_json(identity.profile_key(), record)
        else:
            version = version_name(compute_hash(record))
            await self.remote.put_json(identity.version_key(version), record)
            await self.remote.put(identity.latest_key(pointer.id, version), b"")

            stale = [m for m in (existing.markers if existing else []) if m != version]
            for marker in stale:
                try:
                    await self.remote.delete(identity.latest_key(pointer.id, marker))
                except NetworkError as e:
                    # Readers pick the newest marker, so leftovers are harmless
                    logger.warning(f"Could not remove old marker {marker}: {e}")

        await self.pointers.mark_synced(pointer.id, pointer.current_hash)
        logger.info(
            f"Pushed {pointer.kind.value} {pointer.id} "
            f"clock={pointer.logical_clock} hash={pointer.current_hash[:12]}"
        )

    # ==================== Per-pointer sync ====================

    @staticmethod
    def _snapshot_of(pointer: Pointer) -> PointerSnapshot:
        return PointerSnapshot(
            id=pointer.id,
            hash=pointer.current_hash,
            logical_clock=pointer.logical_clock,
            last_modified=pointer.last_modified,
        )

    async def sync_pointer(
        self,
        pointer_id: str,
        email: str | Identity,
        remote_projects: dict[str, list[str]] | None = None,
    ) -> PointerSyncResult:
        """Run one sync pass for a single pointer.

        Never raises for sync failures; the returned result carries the
        final state and error.
        """
        identity = email if isinstance(email, Identity) else Identity.from_email(email)

        if self.pointers.handle.is_busy(pointer_id) or self._sync_lock(pointer_id).locked():
            logger.debug(f"Deferring sync of {pointer_id}: busy")
            return PointerSyncResult(pointer_id, PointerSyncState.DEFERRED)

        async with self._sync_lock(pointer_id):
            try:
                result = await self._sync_pointer(pointer_id, identity, remote_projects)
            except StaleWriteError as e:
                logger.info(f"Deferring sync of {pointer_id}: {e}")
                result = PointerSyncResult(pointer_id, PointerSyncState.DEFERRED, error=e)
            except (IntegrityError, NetworkError, NotFoundError, StorageError) as e:
                logger.warning(f"Sync of {pointer_id} failed: {e}")
                result = PointerSyncResult(pointer_id, PointerSyncState.FAILED, error=e)

        if result.state in (PointerSyncState.RECONCILED, PointerSyncState.RESOLVED):
            self.state.pending.discard(pointer_id)
        else:
            self.state.pending.add(pointer_id)
        return result

    async def _sync_pointer(
        self,
        pointer_id: str,
        identity: Identity,
        remote_projects: dict[str, list[str]] | None,
    ) -> PointerSyncResult:
        pointer = await self.pointers.get(pointer_id)
        remote = await self._fetch_remote(identity, pointer, remote_projects)

        # No remote record: push
        if remote is None:
            await self._push(pointer, identity, None)
            return PointerSyncResult(pointer_id, PointerSyncState.RECONCILED, action="push")

        local = self._snapshot_of(pointer)

        # Same content: nothing to transfer
        if remote.snapshot.hash == local.hash:
            if pointer.synced_hash != local.hash:
                await self.pointers.mark_synced(pointer_id, local.hash)
            self.state.conflicts.pop(pointer_id, None)
            return PointerSyncResult(pointer_id, PointerSyncState.RECONCILED, action="none")

        history = set(await self.versions.history_hashes(pointer_id))

        if local_dominates(local, remote.snapshot, history, pointer.synced_hash):
            await self._push(pointer, identity, remote)
            return PointerSyncResult(pointer_id, PointerSyncState.RECONCILED, action="push")

        if remote_dominates(local, remote.snapshot, pointer.synced_hash):
            blobs = await self._download(remote)
            await self._store_blobs(blobs)
            await self.pointers.adopt(
                pointer_id,
                remote.snapshot.hash,
                remote.snapshot.logical_clock,
                remote.snapshot.last_modified,
                expected_hash=local.hash,
                synced_hash=remote.snapshot.hash,
            )
            logger.info(
                f"Pulled {pointer_id} clock={remote.snapshot.logical_clock} "
                f"hash={remote.snapshot.hash[:12]}"
            )
            return PointerSyncResult(pointer_id, PointerSyncState.RECONCILED, action="pull")

        # Concurrent edits: report, never apply automatically
        blobs = await self._download(remote)
        report = ConflictReport(
            pointer_id=pointer_id,
            local=local,
            remote=remote.snapshot,
            local_payload=await self.content.get(local.hash),
            remote_payload=blobs[remote.snapshot.hash][0],
            recommendation=resolve(local, remote.snapshot),
        )
        self.state.conflicts[pointer_id] = _PendingConflict(
            report=report,
            identity=identity,
            kind=pointer.kind,
            remote=remote,
            blobs=blobs,
        )
        logger.info(
            f"Conflict on {pointer_id}: local clock={local.logical_clock}, "
            f"remote clock={remote.snapshot.logical_clock}; "
            f"recommend {report.recommendation.action.value}"
        )
        return PointerSyncResult(
            pointer_id,
            PointerSyncState.CONFLICT,
            error=ConflictUnresolved(pointer_id, report),
            conflict=report,
        )

    async def import_project(
        self,
        project_id: str,
        identity: Identity,
        owner_id: str,
        markers: list[str],
    ) -> PointerSyncResult:
        """Create a local project from a remote-only record."""
        async with self._sync_lock(project_id):
            try:
                remote = await self._fetch_project(identity, project_id, markers)
                if remote is None:
                    return PointerSyncResult(project_id, PointerSyncState.RECONCILED, action="none")

                blobs = await self._download(remote)
                await self._store_blobs(blobs)
                payload, _ = blobs[remote.snapshot.hash]
                await self.pointers.create(
                    project_id,
                    owner_id,
                    payload,
                    ContentKind.PROJECT,
                    logical_clock=remote.snapshot.logical_clock,
                    last_modified=remote.snapshot.last_modified,
                    synced_hash=remote.snapshot.hash,
                )
            except PocketStoreError as e:
                logger.warning(f"Import of {project_id} failed: {e}")
                self.state.pending.add(project_id)
                return PointerSyncResult(project_id, PointerSyncState.FAILED, error=e)

        self.state.pending.discard(project_id)
        logger.info(f"Imported project {project_id} clock={remote.snapshot.logical_clock}")
        return PointerSyncResult(project_id, PointerSyncState.RECONCILED, action=Action.IMPORT.value)

    # ==================== Account sync ====================

    async def sync_account(self, email: str, user_id: str) -> SyncReport:
        """Sync a user's profile and all of their projects.

        Runs legacy migration first. A failing pointer never stops the others;
        a failed migration or listing aborts the pass so it is retried whole.
        """
        identity = Identity.from_email(email)
        report = SyncReport(email=identity.email)

        try:
            report.migrated_keys = await self.migrate_legacy(identity)
        except MigrationError as e:
            logger.warning(str(e))
            report.error = e
            report.timestamp = datetime.now(timezone.utc)
            return report

        report.results.append(await self.sync_pointer(user_id, identity))

        try:
            remote_projects = await self._list_remote_projects(identity)
        except NetworkError as e:
            logger.warning(f"Could not list remote projects for {identity.email}: {e}")
            report.error = e
            report.timestamp = datetime.now(timezone.utc)
            return report

        local_ids = set()
        for pointer in await self.pointers.list_by_owner(user_id):
            if pointer.kind is not ContentKind.PROJECT:
                continue
            local_ids.add(pointer.id)
            report.results.append(
                await self.sync_pointer(pointer.id, identity, remote_projects)
            )

        for project_id, markers in remote_projects.items():
            if project_id in local_ids:
                continue
            if await self.pointers.exists(project_id):
                logger.warning(f"Remote project {project_id} exists locally under another owner")
                continue
            report.results.append(
                await self.import_project(project_id, identity, user_id, markers)
            )

        report.timestamp = datetime.now(timezone.utc)
        if report.success:
            self.state.last_sync = report.timestamp

        logger.info(
            f"Sync for {identity.email}: {len(report.results)} pointers, "
            f"{len(report.conflicts)} conflicts, {len(report.failed)} failed"
        )
        return report

    # ==================== Conflict resolution ====================

    def pending_conflicts(self) -> list[ConflictReport]:
        return [pending.report for pending in self.state.conflicts.values()]

    async def resolve_conflict(self, pointer_id: str, action: Action | str) -> PointerSyncResult:
        """Apply an explicit decision to a pending conflict.

        Every path keeps the losing state: either as a checkpoint version or
        as a renamed pointer. Remote writes go first; pointers only move once
        they have succeeded, so a failed attempt can simply be retried.

        Raises:
            NotFoundError: If no conflict is pending for the pointer.
            StaleWriteError: If the pointer changed since the conflict was found.
            ValueError: If the action does not apply to a conflict.
        """
        action = Action(action)
        pending = self.state.conflicts.get(pointer_id)
        if pending is None:
            raise NotFoundError("Conflict", pointer_id)
        if action is Action.IMPORT:
            raise ValueError("Import only applies to pointers that exist remotely only")
        if action is Action.RENAME and pending.kind is ContentKind.USER:
            raise ValueError("A profile cannot be renamed")

        report = pending.report
        keep = report.recommendation.keep
        async with self._sync_lock(pointer_id):
            local = await self.pointers.get(pointer_id)
            if local.current_hash != report.local.hash:
                self.state.conflicts.pop(pointer_id, None)
                raise StaleWriteError(pointer_id, report.local.hash, local.current_hash)

            # Blobs are immutable and unreferenced until a pointer moves
            await self._store_blobs(pending.blobs)

            renamed_to = None
            if action is Action.RENAME:
                renamed_to = (await self._publish_renamed(pending, local)).id

            if action is Action.OVERWRITE or (action is Action.RENAME and keep == "remote"):
                await self.pointers.adopt(
                    pointer_id,
                    report.remote.hash,
                    report.remote.logical_clock,
                    report.remote.last_modified,
                    expected_hash=local.current_hash,
                    demoted_label=VersionLabel.CHECKPOINT,
                    synced_hash=report.remote.hash,
                )
            else:
                merged = replace(
                    local,
                    logical_clock=max(local.logical_clock, report.remote.logical_clock) + 1,
                    last_modified=datetime.now(timezone.utc),
                )
                await self._push(merged, pending.identity, pending.remote)
                await self.versions.snapshot(pointer_id, report.remote.hash, VersionLabel.CHECKPOINT)
                await self.pointers.adopt(
                    pointer_id,
                    merged.current_hash,
                    merged.logical_clock,
                    merged.last_modified,
                    expected_hash=local.current_hash,
                    synced_hash=merged.current_hash,
                )

        self.state.conflicts.pop(pointer_id, None)
        self.state.pending.discard(pointer_id)
        logger.info(f"Resolved conflict on {pointer_id} with {action.value}")
        return PointerSyncResult(
            pointer_id,
            PointerSyncState.RESOLVED,
            action=action.value,
            renamed_to=renamed_to,
        )

    async def _publish_renamed(self, pending: _PendingConflict, local: Pointer) -> Pointer:
        """Push the losing side under a fresh id, then create it locally.

        The id and timestamp are fixed on the first attempt, so a retry after
        a failed push republishes the same record instead of another copy.
        """
        report = pending.report
        if report.recommendation.keep == "remote":
            losing_hash, losing_payload = report.local.hash, report.local_payload
        else:
            losing_hash, losing_payload = report.remote.hash, report.remote_payload

        if pending.renamed is None:
            pending.renamed = Pointer(
                id=generate_id(local.kind.value),
                kind=local.kind,
                owner_id=local.owner_id,
                current_hash=losing_hash,
                last_modified=datetime.now(timezone.utc),
                logical_clock=1,
            )
        renamed = pending.renamed

        await self._push(renamed, pending.identity, None)
        if not await self.pointers.exists(renamed.id):
            await self.pointers.create(
                renamed.id,
                renamed.owner_id,
                losing_payload,
                renamed.kind,
                last_modified=renamed.last_modified,
                synced_hash=renamed.current_hash,
            )
        logger.info(f"Renamed losing side of {report.pointer_id} to {renamed.id}")
        return renamed

    # ==================== Background loop ====================

    async def sync_loop(
        self,
        email: str,
        user_id: str,
        interval_seconds: int = 300,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run continuous sync passes.

        Args:
            email: Account to sync.
            user_id: Local user pointer of that account.
            interval_seconds: Seconds between sync attempts.
            stop_event: Event to signal loop should stop.
        """
        logger.info(f"Starting sync loop with {interval_seconds}s interval")
        consecutive_failures = 0

        while True:
            if stop_event and stop_event.is_set():
                break

            try:
                report = await self.sync_account(email, user_id)
                consecutive_failures = 0 if report.success else consecutive_failures + 1
            except PocketStoreError as e:
                logger.error(f"Sync loop error: {e}")
                consecutive_failures += 1

            # Back off after consecutive failures
            wait_time = interval_seconds
            if consecutive_failures > 0:
                wait_time = min(interval_seconds * (2 ** consecutive_failures), 3600)
                logger.debug(f"Backing off sync for {wait_time}s")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
                    break
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(wait_time)

        logger.info("Sync loop stopped")

    @property
    def last_sync(self) -> datetime | None:
        """Timestamp of last fully successful sync."""
        return self.state.last_sync

    def get_sync_status(self) -> dict[str, Any]:
        """Summary of in-memory sync state."""
        return {
            "remote_url": self.remote.remote_url,
            "last_sync": self.state.last_sync.isoformat() if self.state.last_sync else None,
            "consecutive_failures": self.remote.consecutive_failures,
            "pending_pointers": sorted(self.state.pending),
            "conflicts": sorted(self.state.conflicts),
            "migrated_accounts": sorted(self.state.migrated),
        }
