"""Local content-addressed store.

Provides:
- Content blobs keyed by the SHA-256 of their canonical form
- Pointers (users, projects) with logical clocks
- An append-only version log with session retention
"""

from .canonical import UNDEFINED, canonicalize, compute_hash, extract_references, generate_id
from .content_store import ContentKind, ContentStore
from .database import StoreHandle
from .payloads import upgrade_payload
from .pointer_store import Pointer, PointerStore
from .version_log import Version, VersionLabel, VersionLog

__all__ = [
    "UNDEFINED",
    "canonicalize",
    "compute_hash",
    "extract_references",
    "generate_id",
    "ContentKind",
    "ContentStore",
    "StoreHandle",
    "upgrade_payload",
    "Pointer",
    "PointerStore",
    "Version",
    "VersionLabel",
    "VersionLog",
]
