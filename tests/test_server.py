"""Tests for the KV server."""

import pytest

pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from pocketstore.config import Config, ServerConfig
from pocketstore.server import FileKVStore, create_app

ADA = {"Authorization": "Bearer tok-ada"}
BOB = {"Authorization": "Bearer tok-bob"}
ADA_PROFILE = "domain/example.com/user/ada/profile"
BLOB = "file/ab/cd/abcd" + "0" * 60


@pytest.fixture
def config(tmp_path):
    """Create a test configuration."""
    return Config(
        server=ServerConfig(
            data_dir=str(tmp_path / "data"),
            tokens={"tok-ada": "ada@example.com", "tok-bob": "bob@example.com"},
        )
    )


@pytest.fixture
def kv_store(config):
    return FileKVStore(config.server.data_dir)


@pytest.fixture
def client(config, kv_store):
    """Create a test client."""
    app = create_app(config, kv_store=kv_store)
    return TestClient(app)


class TestFileKVStore:
    """Tests for the flat-file store."""

    def test_put_get(self, kv_store):
        """Test storing and reading a value."""
        kv_store.put("a/b/c", b"value")
        assert kv_store.get("a/b/c") == b"value"
        assert kv_store.get("a/b/missing") is None

    def test_overwrite(self, kv_store):
        """Test that put replaces a value."""
        kv_store.put("k", b"one")
        kv_store.put("k", b"two")
        assert kv_store.get("k") == b"two"

    def test_put_if_absent(self, kv_store):
        """Test first-write-wins puts."""
        assert kv_store.put_if_absent("k", b"one")
        assert not kv_store.put_if_absent("k", b"two")
        assert kv_store.get("k") == b"one"

    def test_list_prefix(self, kv_store):
        """Test sorted prefix listing."""
        for key in ["x/b", "x/a", "x/sub/c", "y/a"]:
            kv_store.put(key, b"")
        assert kv_store.list("x/") == ["x/a", "x/b", "x/sub/c"]
        assert kv_store.list("x/s") == ["x/sub/c"]
        assert kv_store.list("z/") == []

    def test_list_skips_temp_files(self, kv_store):
        """Test that leftover temp files are not listed."""
        kv_store.put("x/a", b"")
        (kv_store.data_dir / "x" / ".tmp_leftover").write_bytes(b"junk")
        assert kv_store.list("x/") == ["x/a"]

    def test_delete(self, kv_store):
        """Test deleting keys."""
        kv_store.put("k", b"v")
        assert kv_store.delete("k")
        assert not kv_store.delete("k")

    @pytest.mark.parametrize("key", ["", "/abs", "a/../b", "a//b", "a/./b", "..", "a/.hidden"])
    def test_rejects_bad_keys(self, kv_store, key):
        """Test that keys cannot escape the data directory."""
        with pytest.raises(ValueError):
            kv_store.put(key, b"x")


class TestKVRoutes:
    """Tests for the KV HTTP surface."""

    def test_requires_authentication(self, client):
        """Test that requests without a session are rejected."""
        assert client.get(f"/kv/{ADA_PROFILE}").status_code == 401
        assert client.put(f"/kv/{ADA_PROFILE}", content=b"x").status_code == 401
        bad = {"Authorization": "Bearer nope"}
        assert client.get(f"/kv/{ADA_PROFILE}", headers=bad).status_code == 401

    def test_put_then_get(self, client):
        """Test that values are opaque bytes."""
        body = b"\x00not json\xff"
        response = client.put(f"/kv/{ADA_PROFILE}", content=body, headers=ADA)
        assert response.status_code == 200
        assert response.json()["written"] is True

        response = client.get(f"/kv/{ADA_PROFILE}", headers=ADA)
        assert response.status_code == 200
        assert response.content == body

    def test_get_missing(self, client):
        """Test that absent keys are 404."""
        assert client.get(f"/kv/{ADA_PROFILE}", headers=ADA).status_code == 404

    def test_other_namespace_forbidden(self, client):
        """Test that an identity cannot touch another account's keys."""
        client.put(f"/kv/{ADA_PROFILE}", content=b"x", headers=ADA)
        assert client.get(f"/kv/{ADA_PROFILE}", headers=BOB).status_code == 403
        assert client.put(f"/kv/{ADA_PROFILE}", content=b"y", headers=BOB).status_code == 403
        assert client.get("/kvlist/domain/example.com/user/ada/", headers=BOB).status_code == 403

    def test_legacy_namespace_allowed(self, client):
        """Test that an identity can read its legacy keys."""
        key = "user/ada@example.com/profile"
        assert client.put(f"/kv/{key}", content=b"old", headers=ADA).status_code == 200
        assert client.get(f"/kv/{key}", headers=ADA).content == b"old"
        assert client.get(f"/kv/{key}", headers=BOB).status_code == 403

    def test_list(self, client):
        """Test prefix listing."""
        client.put(f"/kv/{ADA_PROFILE}", content=b"x", headers=ADA)
        client.put("/kv/domain/example.com/user/ada/project/version/v1", content=b"y", headers=ADA)

        response = client.get("/kvlist/domain/example.com/user/ada/", headers=ADA)
        assert response.status_code == 200
        assert response.json() == {
            "keys": [
                "domain/example.com/user/ada/profile",
                "domain/example.com/user/ada/project/version/v1",
            ]
        }

    def test_list_root_forbidden(self, client):
        """Test that listing everything is not allowed."""
        assert client.get("/kvlist/", headers=ADA).status_code == 403

    def test_delete(self, client):
        """Test deleting an owned key."""
        client.put(f"/kv/{ADA_PROFILE}", content=b"x", headers=ADA)
        assert client.delete(f"/kv/{ADA_PROFILE}", headers=ADA).status_code == 200
        assert client.delete(f"/kv/{ADA_PROFILE}", headers=ADA).status_code == 404

    def test_invalid_key(self, client):
        """Test that traversal attempts are rejected."""
        response = client.put(
            "/kv/domain/example.com/user/ada/.secret", content=b"x", headers=ADA
        )
        assert response.status_code == 400


class TestSharedBlobs:
    """Tests for the public file/ namespace."""

    def test_shared_between_identities(self, client):
        """Test that any identity can read a blob."""
        client.put(f"/kv/{BLOB}", content=b"blob", headers=ADA)
        assert client.get(f"/kv/{BLOB}", headers=BOB).content == b"blob"

    def test_first_write_wins(self, client):
        """Test that existing blobs are never replaced."""
        client.put(f"/kv/{BLOB}", content=b"first", headers=ADA)
        response = client.put(f"/kv/{BLOB}", content=b"second", headers=BOB)

        assert response.status_code == 200
        assert response.json()["written"] is False
        assert client.get(f"/kv/{BLOB}", headers=ADA).content == b"first"

    def test_delete_refused(self, client):
        """Test that blobs cannot be deleted."""
        client.put(f"/kv/{BLOB}", content=b"blob", headers=ADA)
        assert client.delete(f"/kv/{BLOB}", headers=ADA).status_code == 403


class TestHealth:
    """Tests for the health endpoint."""

    def test_health_needs_no_auth(self, client):
        """Test health check."""
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_custom_authorizer(self, config, kv_store):
        """Test that the authorization collaborator can be injected."""
        app = create_app(config, kv_store=kv_store, authorize=lambda request: "ada@example.com")
        client = TestClient(app)
        assert client.put(f"/kv/{ADA_PROFILE}", content=b"x").status_code == 200
