"""Request authorization for the KV server.

An identity is the email of the session behind a request. Each identity
owns its ``domain/{domain}/user/{localpart}/`` namespace and its legacy
``user/{email}/`` namespace; ``file/`` blobs are shared.
"""

import logging
from typing import Callable

from fastapi import Request

from ..sync.keys import FILE_PREFIX, Identity

logger = logging.getLogger(__name__)

Authorizer = Callable[[Request], str | None]


class TokenAuthorizer:
    """Resolve ``Authorization: Bearer <token>`` to an account email."""

    def __init__(self, tokens: dict[str, str]):
        self.tokens = dict(tokens)

    def __call__(self, request: Request) -> str | None:
        header = request.headers.get("authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token:
            return None
        return self.tokens.get(token.strip())


def is_shared_key(key: str) -> bool:
    return key.startswith(FILE_PREFIX)


def can_access(email: str, key: str) -> bool:
    """True if the identity may read or write key (or list it as a prefix)."""
    if is_shared_key(key):
        return True
    try:
        identity = Identity.from_email(email)
    except ValueError:
        logger.warning(f"Rejecting malformed identity {email!r}")
        return False
    return key.startswith(identity.prefix) or key.startswith(identity.legacy_prefix)
