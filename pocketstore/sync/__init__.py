"""Sync between the local store and a remote key-value service.

Pushes and pulls pointers with their content blobs, detects concurrent
edits with logical clocks plus published ancestry, and migrates accounts
from the legacy ``user/{email}/`` key layout.
"""

from .engine import (
    PointerSyncResult,
    PointerSyncState,
    SyncEngine,
    SyncReport,
    SyncState,
)
from .keys import Identity, file_key
from .remote_client import RemoteStoreClient
from .resolver import Action, ConflictReport, PointerSnapshot, Recommendation, resolve

__all__ = [
    "Action",
    "ConflictReport",
    "Identity",
    "PointerSnapshot",
    "PointerSyncResult",
    "PointerSyncState",
    "Recommendation",
    "RemoteStoreClient",
    "SyncEngine",
    "SyncReport",
    "SyncState",
    "file_key",
    "resolve",
]
