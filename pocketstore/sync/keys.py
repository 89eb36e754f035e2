"""Remote key layout.

    domain/{domain}/user/{localpart}/profile
    domain/{domain}/user/{localpart}/project/latest/{project_id}/{version}
    domain/{domain}/user/{localpart}/project/version/{version}
    file/{hash[0:2]}/{hash[2:4]}/{hash}

Accounts used to live under ``user/{email}/``; that prefix is the legacy
layout copied over by migration.
"""

from dataclasses import dataclass

from ..store.canonical import is_hash

FILE_PREFIX = "file/"
VERSION_PREFIX = "version_"


@dataclass(frozen=True)
class Identity:
    """An account, identified by its email address."""

    email: str

    def __post_init__(self):
        localpart, sep, domain = self.email.partition("@")
        if not sep or not localpart or not domain or "/" in self.email:
            raise ValueError(f"Invalid account email: {self.email!r}")

    @classmethod
    def from_email(cls, email: str) -> "Identity":
        return cls(email.strip().lower())

    @property
    def localpart(self) -> str:
        return self.email.partition("@")[0]

    @property
    def domain(self) -> str:
        return self.email.partition("@")[2]

    @property
    def prefix(self) -> str:
        """Root of this account's domain-scoped namespace."""
        return f"domain/{self.domain}/user/{self.localpart}/"

    @property
    def legacy_prefix(self) -> str:
        """Root of this account's pre-migration namespace."""
        return f"user/{self.email}/"

    def profile_key(self) -> str:
        return f"{self.prefix}profile"

    def latest_prefix(self, project_id: str | None = None) -> str:
        base = f"{self.prefix}project/latest/"
        return f"{base}{project_id}/" if project_id else base

    def latest_key(self, project_id: str, version: str) -> str:
        return f"{self.latest_prefix(project_id)}{version}"

    def version_key(self, version: str) -> str:
        return f"{self.prefix}project/version/{version}"

    def to_current(self, legacy_key: str) -> str:
        """Map a legacy key onto the domain-scoped namespace."""
        if not legacy_key.startswith(self.legacy_prefix):
            raise ValueError(f"Not a legacy key for {self.email}: {legacy_key}")
        return self.prefix + legacy_key[len(self.legacy_prefix):]


def file_key(obj_hash: str) -> str:
    """Global, content-addressed key of a blob."""
    if not is_hash(obj_hash):
        raise ValueError(f"Not a content hash: {obj_hash!r}")
    return f"{FILE_PREFIX}{obj_hash[0:2]}/{obj_hash[2:4]}/{obj_hash}"


def version_name(record_hash: str) -> str:
    """``version_`` plus the first 16 hex chars of a record hash."""
    return f"{VERSION_PREFIX}{record_hash[:16]}"


def parse_latest_key(identity: Identity, key: str) -> tuple[str, str] | None:
    """Split a latest-marker key into (project_id, version), or None."""
    base = identity.latest_prefix()
    if not key.startswith(base):
        return None
    parts = key[len(base):].split("/")
    if len(parts) != 2 or not parts[0] or not parts[1].startswith(VERSION_PREFIX):
        return None
    return parts[0], parts[1]
