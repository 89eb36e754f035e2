"""Schema-tagged payload upgrades applied on read.

Stored blobs are immutable, so older payload shapes stay in the content
store forever. Readers call upgrade_payload() to get the current shape.
"""

import copy
import logging
from typing import Any, Callable

from .content_store import ContentKind

logger = logging.getLogger(__name__)

SCHEMA_KEY = "schema"
DEFAULT_AVATAR_BG = "#E8F4F8"

Upgrader = Callable[[dict[str, Any]], dict[str, Any]]

# kind -> list of upgraders; upgrader i turns schema i+1 into schema i+2
_UPGRADERS: dict[ContentKind, list[Upgrader]] = {}


def register_upgrader(kind: ContentKind, upgrader: Upgrader) -> None:
    """Append the next schema step for a kind."""
    _UPGRADERS.setdefault(ContentKind(kind), []).append(upgrader)


def current_schema(kind: ContentKind | str) -> int:
    return len(_UPGRADERS.get(ContentKind(kind), [])) + 1


def payload_schema(payload: dict[str, Any]) -> int:
    """Schema tag of a payload; untagged payloads are schema 1."""
    value = payload.get(SCHEMA_KEY, 1)
    return value if isinstance(value, int) and value >= 1 else 1


def upgrade_payload(kind: ContentKind | str, payload: Any) -> Any:
    """Bring a payload up to the current schema for its kind.

    Non-dict payloads (file text, bytes) are returned unchanged, as are
    payloads already at or beyond the current schema. The input is never
    mutated.
    """
    kind = ContentKind(kind)
    if not isinstance(payload, dict):
        return payload

    steps = _UPGRADERS.get(kind, [])
    version = payload_schema(payload)
    if version > len(steps):
        return payload

    upgraded = copy.deepcopy(payload)
    for step in steps[version - 1:]:
        upgraded = step(upgraded)
        version += 1
        upgraded[SCHEMA_KEY] = version

    logger.debug(f"Upgraded {kind.value} payload to schema {version}")
    return upgraded


def _user_v1_to_v2(payload: dict[str, Any]) -> dict[str, Any]:
    # Legacy avatars were a config object; the current format is a shapes list
    avatar = payload.get("avatar")
    if isinstance(avatar, dict) and isinstance(avatar.get("shapes"), list):
        payload["avatar"] = {
            "shapes": avatar["shapes"],
            "bgColor": avatar.get("bgColor") or DEFAULT_AVATAR_BG,
        }
    elif isinstance(avatar, dict):
        payload["avatar"] = {"shapes": [], "bgColor": DEFAULT_AVATAR_BG}
    else:
        payload["avatar"] = None
    return payload


register_upgrader(ContentKind.USER, _user_v1_to_v2)
