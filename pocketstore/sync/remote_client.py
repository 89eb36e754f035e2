"""Client for the remote key-value service.

Handles HTTP transport with retry logic, and the record/blob formats the
sync engine stores under the remote key layout.
"""

import asyncio
import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from ..errors import (
    AuthorizationError,
    IntegrityError,
    NetworkError,
    RemoteError,
    SyncTimeoutError,
)
from ..store.canonical import canonicalize, compute_hash, from_transport, to_transport
from ..store.content_store import ContentKind
from .keys import file_key

logger = logging.getLogger(__name__)


class RemoteStoreClient:
    """Async client for the KV HTTP surface.

    Endpoints:
    - GET/PUT/DELETE /kv/{key}
    - GET /kvlist/{prefix} -> {"keys": [...]}

    Server errors, connection failures and timeouts are retried with
    exponential backoff; everything else is raised immediately.
    """

    def __init__(
        self,
        remote_url: str,
        token: str | None = None,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            remote_url: Base URL of the KV server (e.g., "http://host:3000").
            token: Bearer token identifying the session.
            max_retries: Maximum attempts per request.
            backoff_seconds: Initial delay between attempts; doubles each time.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.remote_url = remote_url.rstrip("/")
        self.token = token
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._consecutive_failures = 0

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.remote_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RemoteStoreClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def _request(
        self,
        method: str,
        path: str,
        content: bytes | None = None,
    ) -> httpx.Response:
        """Make an HTTP request with exponential backoff retry.

        Returns the response for 2xx and 404; raises otherwise.
        """
        client = await self._get_client()
        backoff = self.backoff_seconds
        last_error: Exception | None = None
        timed_out = False

        for attempt in range(self.max_retries):
            try:
                response = await client.request(method, path, content=content)

                if response.status_code < 300 or response.status_code == 404:
                    self._consecutive_failures = 0
                    return response

                if response.status_code in (401, 403):
                    raise AuthorizationError(response.status_code, response.text)

                if response.status_code < 500:
                    # Client error, don't retry
                    raise RemoteError(response.status_code, response.text)

                # Server error, retry
                logger.warning(
                    f"Server error {response.status_code} on {method} {path}, "
                    f"attempt {attempt + 1}/{self.max_retries}"
                )
                last_error = RemoteError(response.status_code, response.text)
                timed_out = False

            except httpx.TimeoutException as e:
                logger.warning(
                    f"Request timeout on {method} {path}, "
                    f"attempt {attempt + 1}/{self.max_retries}"
                )
                last_error = e
                timed_out = True
            except httpx.TransportError as e:
                logger.warning(
                    f"Connection failed on {method} {path}, "
                    f"attempt {attempt + 1}/{self.max_retries}"
                )
                last_error = e
                timed_out = False

            if attempt < self.max_retries - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        self._consecutive_failures += 1
        msg = f"{method} {path} failed after {self.max_retries} attempts: {last_error}"
        if timed_out:
            raise SyncTimeoutError(msg)
        raise NetworkError(msg)

    # ==================== Raw key-value operations ====================

    async def get(self, key: str) -> bytes | None:
        """Value of a key, or None if absent."""
        response = await self._request("GET", f"/kv/{quote(key)}")
        if response.status_code == 404:
            return None
        return response.content

    async def put(self, key: str, value: bytes) -> None:
        await self._request("PUT", f"/kv/{quote(key)}", content=value)
        logger.debug(f"PUT {key} ({len(value)} bytes)")

    async def delete(self, key: str) -> bool:
        """Delete a key. Returns False if it did not exist."""
        response = await self._request("DELETE", f"/kv/{quote(key)}")
        return response.status_code != 404

    async def list(self, prefix: str) -> list[str]:
        """Keys starting with prefix, sorted."""
        response = await self._request("GET", f"/kvlist/{quote(prefix)}")
        if response.status_code == 404:
            return []
        return sorted(response.json().get("keys", []))

    # ==================== JSON records ====================

    async def get_json(self, key: str) -> dict[str, Any] | None:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise RemoteError(200, f"Malformed record at {key}: {e}")

    async def put_json(self, key: str, record: dict[str, Any]) -> None:
        await self.put(key, canonicalize(record))

    # ==================== Content blobs ====================

    async def put_blob(self, obj_hash: str, payload: Any, kind: ContentKind | str) -> None:
        """Upload a blob under its content-addressed key.

        Re-uploading an existing hash is harmless.
        """
        encoding, data = to_transport(payload)
        envelope = {"kind": ContentKind(kind).value, "encoding": encoding, "data": data}
        await self.put(file_key(obj_hash), canonicalize(envelope))

    async def get_blob(self, obj_hash: str) -> tuple[Any, ContentKind] | None:
        """Download a blob and verify it hashes to obj_hash.

        Returns (payload, kind), or None if the remote has no such blob.

        Raises:
            IntegrityError: If the content does not match the hash.
        """
        raw = await self.get(file_key(obj_hash))
        if raw is None:
            return None

        try:
            envelope = json.loads(raw.decode("utf-8"))
            payload = from_transport(envelope["encoding"], envelope["data"])
            kind = ContentKind(envelope.get("kind", ContentKind.FILE.value))
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise IntegrityError(obj_hash, None, f"undecodable blob: {e}")

        actual = compute_hash(payload)
        if actual != obj_hash:
            raise IntegrityError(obj_hash, actual)
        return payload, kind

    async def check_connection(self) -> bool:
        """True if the server answers its health endpoint."""
        try:
            client = await self._get_client()
            response = await client.get("/api/health")
            return response.status_code == 200
        except Exception as e:
            logger.debug(f"Health check failed: {e}")
            return False
