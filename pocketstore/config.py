"""Configuration loading for pocketstore."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class StoreConfig:
    """Local content/pointer store."""

    db_path: str = "~/.pocketstore/store.db"
    keep_session_versions: int = 10

    @property
    def resolved_db_path(self) -> Path:
        return Path(self.db_path).expanduser()


@dataclass
class SyncConfig:
    """Sync with the remote key-value store."""

    enabled: bool = False
    remote_url: str = ""
    token: str | None = None
    email: str = ""
    sync_interval_minutes: int = 5
    retry_max_attempts: int = 3
    retry_backoff_seconds: float = 1.0
    timeout_seconds: float = 30.0
    ancestry_depth: int = 20


@dataclass
class ServerConfig:
    """Remote KV server."""

    host: str = "0.0.0.0"
    port: int = 3000
    data_dir: str = "./data"
    tokens: dict[str, str] = field(default_factory=dict)
    """Bearer token -> account email"""


@dataclass
class Config:
    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with POCKETSTORE_ prefix."""
    return os.environ.get(f"POCKETSTORE_{key}", default)


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Store overrides
    if db_path := _get_env("STORE_DB_PATH"):
        config.store.db_path = db_path

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _as_bool(sync_enabled)
    if remote_url := _get_env("SYNC_REMOTE_URL"):
        config.sync.remote_url = remote_url
    if token := _get_env("SYNC_TOKEN"):
        config.sync.token = token
    if email := _get_env("SYNC_EMAIL"):
        config.sync.email = email
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.sync.sync_interval_minutes = int(sync_interval)

    # Server overrides
    if host := _get_env("SERVER_HOST"):
        config.server.host = host
    if port := _get_env("SERVER_PORT"):
        config.server.port = int(port)
    if data_dir := _get_env("SERVER_DATA_DIR"):
        config.server.data_dir = data_dir

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse store config
            if "store" in data:
                store_data = data["store"]
                config.store = StoreConfig(
                    db_path=store_data.get("db_path", config.store.db_path),
                    keep_session_versions=store_data.get(
                        "keep_session_versions", config.store.keep_session_versions
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    remote_url=sync_data.get("remote_url", config.sync.remote_url),
                    token=sync_data.get("token", config.sync.token),
                    email=sync_data.get("email", config.sync.email),
                    sync_interval_minutes=sync_data.get(
                        "sync_interval_minutes", config.sync.sync_interval_minutes
                    ),
                    retry_max_attempts=sync_data.get(
                        "retry_max_attempts", config.sync.retry_max_attempts
                    ),
                    retry_backoff_seconds=sync_data.get(
                        "retry_backoff_seconds", config.sync.retry_backoff_seconds
                    ),
                    timeout_seconds=sync_data.get(
                        "timeout_seconds", config.sync.timeout_seconds
                    ),
                    ancestry_depth=sync_data.get(
                        "ancestry_depth", config.sync.ancestry_depth
                    ),
                )

            # Parse server config
            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                    data_dir=server_data.get("data_dir", config.server.data_dir),
                    tokens=dict(server_data.get("tokens") or {}),
                )

    return _apply_env_overrides(config)
