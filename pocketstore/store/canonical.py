"""Canonical encoding and content hashing.

Objects are serialized with keys sorted recursively and no whitespace, so
equal payloads always produce the same SHA-256 hash regardless of key order.
Strings and bytes are hashed as-is.
"""

import base64
import hashlib
import json
import math
import re
import secrets
from enum import Enum
from typing import Any


class _Undefined:
    """Marker for fields that must be left out of the canonical form."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()

HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")


class Encoding(str, Enum):
    """How a payload is stored and transported."""

    JSON = "json"
    TEXT = "text"
    BASE64 = "base64"


def _encode_value(value: Any) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError(f"Cannot canonicalize non-finite number: {value}")
        # Integral floats serialize like integers so 1 and 1.0 hash alike
        if value.is_integer() and abs(value) < 2**53:
            return str(int(value))
        return repr(value)
    if isinstance(value, dict):
        pairs = []
        for key in sorted(value):
            if not isinstance(key, str):
                raise TypeError(f"Object keys must be strings, got {type(key).__name__}")
            item = value[key]
            if item is UNDEFINED:
                continue
            pairs.append(f"{json.dumps(key, ensure_ascii=False)}:{_encode_value(item)}")
        return "{" + ",".join(pairs) + "}"
    if isinstance(value, (list, tuple)):
        items = ["null" if item is UNDEFINED else _encode_value(item) for item in value]
        return "[" + ",".join(items) + "]"
    raise TypeError(f"Cannot canonicalize value of type {type(value).__name__}")


def canonicalize(payload: Any) -> bytes:
    """Encode a payload to its canonical byte form.

    Rules:
    - str is encoded as UTF-8 without quoting
    - bytes are returned unchanged
    - everything else is canonical JSON: keys sorted, no whitespace,
      UNDEFINED fields omitted, arrays in order

    Raises:
        TypeError / ValueError: If the payload is not JSON-representable.
    """
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if payload is UNDEFINED:
        raise ValueError("Cannot canonicalize an undefined payload")
    return _encode_value(payload).encode("utf-8")


def compute_hash(payload: Any) -> str:
    """SHA-256 of the canonical form, as lowercase hex."""
    return hashlib.sha256(canonicalize(payload)).hexdigest()


def is_hash(value: Any) -> bool:
    """True if value looks like a SHA-256 hex digest."""
    return isinstance(value, str) and bool(HASH_PATTERN.match(value))


def encoding_for(payload: Any) -> Encoding:
    """Pick the storage encoding for a payload."""
    if isinstance(payload, bytes):
        return Encoding.BASE64
    if isinstance(payload, str):
        return Encoding.TEXT
    return Encoding.JSON


def encode_payload(payload: Any) -> tuple[Encoding, bytes]:
    """Return (encoding, stored bytes) for a payload."""
    return encoding_for(payload), canonicalize(payload)


def decode_payload(encoding: Encoding | str, data: bytes) -> Any:
    """Inverse of encode_payload."""
    encoding = Encoding(encoding)
    if encoding is Encoding.BASE64:
        return bytes(data)
    text = bytes(data).decode("utf-8")
    if encoding is Encoding.TEXT:
        return text
    return json.loads(text)


def to_transport(payload: Any) -> tuple[str, Any]:
    """Return (encoding, JSON-safe data) for sending a payload over the wire."""
    encoding = encoding_for(payload)
    if encoding is Encoding.BASE64:
        return encoding.value, base64.b64encode(payload).decode("ascii")
    return encoding.value, payload


def from_transport(encoding: str, data: Any) -> Any:
    """Inverse of to_transport."""
    encoding = Encoding(encoding)
    if encoding is Encoding.BASE64:
        return base64.b64decode(data)
    if encoding is Encoding.TEXT and not isinstance(data, str):
        raise ValueError("Text payload must be a string")
    return data


def extract_references(payload: Any) -> list[str]:
    """Collect content hashes a payload refers to.

    A reference is the value of any ``hash`` key that holds a SHA-256 hex
    digest, at any depth. Order of first appearance is kept.
    """
    refs: list[str] = []
    seen: set[str] = set()

    def walk(node: Any) -> None:
        if isinstance(node, dict):
            for key, value in node.items():
                if key == "hash" and is_hash(value) and value not in seen:
                    seen.add(value)
                    refs.append(value)
                else:
                    walk(value)
        elif isinstance(node, (list, tuple)):
            for item in node:
                walk(item)

    walk(payload)
    return refs


def generate_id(kind: str, length: int = 12) -> str:
    """Random local id, e.g. ``user_a3f9c2b8e1d4``."""
    return f"{kind}_{secrets.token_hex(length // 2)}"
