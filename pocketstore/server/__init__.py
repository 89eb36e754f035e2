"""Key-value server for pocketstore sync.

Serves ``/kv/{key}`` and ``/kvlist/{prefix}`` over a flat-file store,
scoped to the authenticated account.
"""

from .app import create_app
from .auth import TokenAuthorizer, can_access
from .kv_store import FileKVStore

__all__ = ["create_app", "FileKVStore", "TokenAuthorizer", "can_access"]
