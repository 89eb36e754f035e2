"""Conflict resolution policy.

Pure decision logic: given the local and remote states of one pointer,
recommend what to do with the incoming (remote) candidate. Nothing here
touches storage.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class Action(str, Enum):
    """What to do with the incoming candidate."""

    IMPORT = "import"  # bring in a pointer that only exists remotely
    OVERWRITE = "overwrite"  # incoming replaces local; local kept in history
    RENAME = "rename"  # keep both; the losing side gets a fresh id
    SKIP = "skip"  # discard incoming; remote kept in local history


@dataclass(frozen=True)
class PointerSnapshot:
    """One side of a pointer at sync time."""

    id: str
    hash: str
    logical_clock: int
    last_modified: datetime
    ancestors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "hash": self.hash,
            "logical_clock": self.logical_clock,
            "last_modified": self.last_modified.isoformat(),
        }


@dataclass(frozen=True)
class Recommendation:
    """Suggested action with a human-readable reason."""

    action: Action
    reason: str
    keep: str = "local"  # "local" or "remote": which state should win

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action.value, "reason": self.reason, "keep": self.keep}


@dataclass
class ConflictReport:
    """Everything a caller needs to decide on a concurrent edit."""

    pointer_id: str
    local: PointerSnapshot
    remote: PointerSnapshot
    local_payload: Any
    remote_payload: Any
    recommendation: Recommendation

    def to_dict(self) -> dict[str, Any]:
        return {
            "pointer_id": self.pointer_id,
            "local": self.local.to_dict(),
            "remote": self.remote.to_dict(),
            "recommendation": self.recommendation.to_dict(),
        }


def resolve(
    local: PointerSnapshot | None,
    remote: PointerSnapshot | None,
) -> Recommendation:
    """Recommend an action for the incoming remote candidate.

    Policy:
    - remote only: import it
    - local only, or identical hashes: nothing to take in
    - otherwise the newer last_modified wins; a tie keeps local
    """
    if local is None and remote is None:
        raise ValueError("resolve() needs at least one side")

    if local is None:
        return Recommendation(Action.IMPORT, "Only the remote copy exists", keep="remote")

    if remote is None:
        return Recommendation(Action.SKIP, "Nothing incoming; local copy is the only one")

    if local.hash == remote.hash:
        return Recommendation(Action.SKIP, "Both copies have identical content")

    if remote.last_modified > local.last_modified:
        return Recommendation(
            Action.OVERWRITE,
            f"Remote copy is newer ({remote.last_modified.isoformat()} > "
            f"{local.last_modified.isoformat()})",
            keep="remote",
        )

    if remote.last_modified < local.last_modified:
        return Recommendation(
            Action.SKIP,
            f"Local copy is newer ({local.last_modified.isoformat()} > "
            f"{remote.last_modified.isoformat()})",
        )

    return Recommendation(Action.SKIP, "Both copies modified at the same time; keeping local")


def local_dominates(
    local: PointerSnapshot,
    remote: PointerSnapshot,
    local_history: set[str],
    synced_hash: str | None = None,
) -> bool:
    """True if the remote state is a provable ancestor of the local one.

    Proof is the remote hash showing up in the local history, or being the
    hash this device last confirmed on the remote.
    """
    if remote.logical_clock >= local.logical_clock:
        return False
    return remote.hash in local_history or remote.hash == synced_hash


def remote_dominates(
    local: PointerSnapshot,
    remote: PointerSnapshot,
    synced_hash: str | None = None,
) -> bool:
    """True if the local state is a provable ancestor of the remote one.

    Proof is the local hash being listed in the remote ancestors, or the
    local copy being unchanged since it was last confirmed on the remote.
    """
    if remote.logical_clock <= local.logical_clock:
        return False
    return local.hash in remote.ancestors or local.hash == synced_hash
