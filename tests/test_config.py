"""Tests for configuration loading."""

import os
import pytest

from pocketstore.config import Config, load_config


@pytest.fixture
def clean_env(monkeypatch):
    """Remove any POCKETSTORE_ variables from the environment."""
    for key in list(os.environ):
        if key.startswith("POCKETSTORE_"):
            monkeypatch.delenv(key)
    return monkeypatch


class TestLoadConfig:
    """Tests for YAML and environment configuration."""

    def test_defaults_without_file(self, clean_env):
        """Test that no config path gives defaults."""
        config = load_config(None)

        assert config.store.db_path == "~/.pocketstore/store.db"
        assert config.store.keep_session_versions == 10
        assert config.sync.enabled is False
        assert config.sync.sync_interval_minutes == 5
        assert config.sync.ancestry_depth == 20
        assert config.server.port == 3000
        assert config.server.tokens == {}

    def test_missing_file_gives_defaults(self, clean_env, tmp_path):
        """Test that a nonexistent path is not an error."""
        assert load_config(tmp_path / "nope.yaml") == Config()

    def test_yaml_sections(self, clean_env, tmp_path):
        """Test parsing every section from YAML."""
        path = tmp_path / "config.yaml"
        path.write_text(
            """
store:
  db_path: /tmp/store.db
  keep_session_versions: 4
sync:
  enabled: true
  remote_url: http://kv.local:3000
  email: ada@example.com
  retry_max_attempts: 5
server:
  port: 4000
  tokens:
    secret: ada@example.com
"""
        )

        config = load_config(path)

        assert config.store.db_path == "/tmp/store.db"
        assert config.store.keep_session_versions == 4
        assert config.sync.enabled is True
        assert config.sync.remote_url == "http://kv.local:3000"
        assert config.sync.email == "ada@example.com"
        assert config.sync.retry_max_attempts == 5
        assert config.sync.timeout_seconds == 30.0
        assert config.server.port == 4000
        assert config.server.host == "0.0.0.0"
        assert config.server.tokens == {"secret": "ada@example.com"}

    def test_empty_file(self, clean_env, tmp_path):
        """Test that an empty YAML file gives defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == Config()

    def test_env_overrides(self, clean_env, tmp_path):
        """Test that POCKETSTORE_ variables win over the file."""
        path = tmp_path / "config.yaml"
        path.write_text("sync:\n  remote_url: http://file\n")
        clean_env.setenv("POCKETSTORE_SYNC_REMOTE_URL", "http://env")
        clean_env.setenv("POCKETSTORE_SYNC_ENABLED", "yes")
        clean_env.setenv("POCKETSTORE_SYNC_INTERVAL", "15")
        clean_env.setenv("POCKETSTORE_SERVER_PORT", "8081")
        clean_env.setenv("POCKETSTORE_STORE_DB_PATH", "/data/store.db")

        config = load_config(path)

        assert config.sync.remote_url == "http://env"
        assert config.sync.enabled is True
        assert config.sync.sync_interval_minutes == 15
        assert config.server.port == 8081
        assert config.store.db_path == "/data/store.db"

    def test_env_false_boolean(self, clean_env):
        """Test that anything but true/1/yes disables."""
        clean_env.setenv("POCKETSTORE_SYNC_ENABLED", "off")
        assert load_config().sync.enabled is False

    def test_resolved_db_path(self, clean_env):
        """Test that ~ is expanded."""
        assert "~" not in str(load_config().store.resolved_db_path)
