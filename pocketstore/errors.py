"""Error types for local store and sync operations."""

from typing import Any


class PocketStoreError(Exception):
    """Base exception for all pocketstore errors."""


class NotFoundError(PocketStoreError):
    """Raised when a pointer, content blob or pending conflict is absent."""

    def __init__(self, what: str, key: str):
        self.what = what
        self.key = key
        super().__init__(f"{what} not found: {key}")


class IntegrityError(PocketStoreError):
    """Raised when pulled content does not hash to the claimed hash."""

    def __init__(self, expected: str, actual: str | None, detail: str = ""):
        self.expected = expected
        self.actual = actual
        msg = f"Integrity check failed: expected {expected}, got {actual}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class ConflictUnresolved(PocketStoreError):
    """Raised when local and remote pointer states were edited concurrently."""

    def __init__(self, pointer_id: str, report: Any = None):
        self.pointer_id = pointer_id
        self.report = report
        super().__init__(f"Unresolved conflict for pointer {pointer_id}")


class NetworkError(PocketStoreError):
    """Raised when the remote service is unreachable after retries."""


class SyncTimeoutError(NetworkError):
    """Raised when remote calls keep timing out."""


class RemoteError(NetworkError):
    """Raised for non-retryable HTTP responses from the remote service."""

    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {detail}")


class AuthorizationError(RemoteError):
    """Raised when the remote service rejects the session identity."""


class MigrationError(PocketStoreError):
    """Raised when copying the legacy key space fails."""

    def __init__(self, email: str, cause: Exception | None = None):
        self.email = email
        self.cause = cause
        msg = f"Legacy migration failed for {email}"
        if cause:
            msg += f": {cause}"
        super().__init__(msg)


class StorageError(PocketStoreError):
    """Raised when sqlite or filesystem operations fail."""

    def __init__(self, operation: str, target: str, cause: Exception | None = None):
        self.operation = operation
        self.target = target
        self.cause = cause
        msg = f"Storage error during {operation}: {target}"
        if cause:
            msg += f"\nCause: {cause}"
        super().__init__(msg)


class StaleWriteError(PocketStoreError):
    """Raised when a pointer changed between a sync read and its write."""

    def __init__(self, pointer_id: str, expected: str, actual: str):
        self.pointer_id = pointer_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Pointer {pointer_id} changed during sync "
            f"(expected {expected[:12]}, found {actual[:12]})"
        )
