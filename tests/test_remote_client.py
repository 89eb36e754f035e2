"""Tests for the remote store client."""

import json
import httpx
import pytest

from pocketstore.config import Config, ServerConfig
from pocketstore.errors import (
    AuthorizationError,
    IntegrityError,
    NetworkError,
    RemoteError,
    SyncTimeoutError,
)
from pocketstore.server import FileKVStore, create_app
from pocketstore.store import ContentKind, compute_hash
from pocketstore.sync import RemoteStoreClient, file_key


@pytest.fixture
def kv_store(tmp_path):
    return FileKVStore(tmp_path / "data")


@pytest.fixture
def app(kv_store):
    """Create the KV app the client talks to."""
    config = Config(server=ServerConfig(tokens={"tok-ada": "ada@example.com"}))
    return create_app(config, kv_store=kv_store)


def make_client(transport: httpx.AsyncBaseTransport, token: str | None = "tok-ada", **kwargs):
    return RemoteStoreClient(
        "http://testserver",
        token=token,
        backoff_seconds=0,
        transport=transport,
        **kwargs,
    )


class TestAgainstServer:
    """Tests using the real KV app in-process."""

    @pytest.mark.asyncio
    async def test_put_get_delete(self, app):
        """Test raw key operations."""
        key = "domain/example.com/user/ada/profile"
        async with make_client(httpx.ASGITransport(app=app)) as client:
            assert await client.get(key) is None
            await client.put(key, b"hello")
            assert await client.get(key) == b"hello"
            assert await client.delete(key)
            assert not await client.delete(key)

    @pytest.mark.asyncio
    async def test_list(self, app):
        """Test prefix listing."""
        async with make_client(httpx.ASGITransport(app=app)) as client:
            await client.put("user/ada@example.com/profile", b"{}")
            await client.put("user/ada@example.com/project/version/v1", b"{}")

            keys = await client.list("user/ada@example.com/")
            assert keys == [
                "user/ada@example.com/profile",
                "user/ada@example.com/project/version/v1",
            ]

    @pytest.mark.asyncio
    async def test_json_records(self, app):
        """Test that records are written in canonical form."""
        key = "domain/example.com/user/ada/profile"
        async with make_client(httpx.ASGITransport(app=app)) as client:
            await client.put_json(key, {"b": 1, "a": 2})
            assert await client.get(key) == b'{"a":2,"b":1}'
            assert await client.get_json(key) == {"a": 2, "b": 1}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"name": "demo"}, "print('hi')", b"\x89PNG"])
    async def test_blob_round_trip(self, app, payload):
        """Test that blobs come back verified with their kind."""
        obj_hash = compute_hash(payload)
        async with make_client(httpx.ASGITransport(app=app)) as client:
            await client.put_blob(obj_hash, payload, ContentKind.FILE)
            assert await client.get_blob(obj_hash) == (payload, ContentKind.FILE)

    @pytest.mark.asyncio
    async def test_missing_blob(self, app):
        """Test that an absent blob is None."""
        async with make_client(httpx.ASGITransport(app=app)) as client:
            assert await client.get_blob("0" * 64) is None

    @pytest.mark.asyncio
    async def test_tampered_blob(self, app, kv_store):
        """Test that a blob whose content does not match its key is rejected."""
        obj_hash = compute_hash("original")
        envelope = {"kind": "file", "encoding": "text", "data": "tampered"}
        kv_store.put(file_key(obj_hash), json.dumps(envelope).encode())

        async with make_client(httpx.ASGITransport(app=app)) as client:
            with pytest.raises(IntegrityError):
                await client.get_blob(obj_hash)

    @pytest.mark.asyncio
    async def test_undecodable_blob(self, app, kv_store):
        """Test that garbage at a blob key is an integrity failure."""
        obj_hash = compute_hash("original")
        kv_store.put(file_key(obj_hash), b"not json")

        async with make_client(httpx.ASGITransport(app=app)) as client:
            with pytest.raises(IntegrityError):
                await client.get_blob(obj_hash)

    @pytest.mark.asyncio
    async def test_unauthenticated(self, app):
        """Test that a missing token raises AuthorizationError."""
        async with make_client(httpx.ASGITransport(app=app), token=None) as client:
            with pytest.raises(AuthorizationError):
                await client.get("domain/example.com/user/ada/profile")

    @pytest.mark.asyncio
    async def test_check_connection(self, app):
        """Test health check."""
        async with make_client(httpx.ASGITransport(app=app)) as client:
            assert await client.check_connection()


class TestRetries:
    """Tests for transport failures."""

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        """Test that 5xx responses are retried."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, content=b"ok")

        async with make_client(httpx.MockTransport(handler), max_retries=3) as client:
            assert await client.get("k") == b"ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        """Test that persistent server errors become NetworkError."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        client = make_client(httpx.MockTransport(handler), max_retries=2)
        with pytest.raises(NetworkError):
            await client.put("k", b"v")
        assert len(calls) == 2
        assert client.consecutive_failures == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_timeouts_raise_sync_timeout(self):
        """Test that repeated timeouts become SyncTimeoutError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with make_client(httpx.MockTransport(handler), max_retries=2) as client:
            with pytest.raises(SyncTimeoutError):
                await client.get("k")

    @pytest.mark.asyncio
    async def test_connection_errors(self):
        """Test that connection failures become NetworkError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with make_client(httpx.MockTransport(handler), max_retries=2) as client:
            with pytest.raises(NetworkError):
                await client.list("k/")

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        """Test that 4xx responses fail immediately."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, text="bad key")

        async with make_client(httpx.MockTransport(handler)) as client:
            with pytest.raises(RemoteError) as exc_info:
                await client.get("k")
        assert exc_info.value.status_code == 400
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_bearer_header_sent(self):
        """Test that the token is sent on every request."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("authorization"))
            return httpx.Response(404)

        async with make_client(httpx.MockTransport(handler)) as client:
            await client.get("k")
        assert seen == ["Bearer tok-ada"]
