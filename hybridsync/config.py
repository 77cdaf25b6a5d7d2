"""Configuration loading for hybridsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .storage.remote_store import MAX_PAGE_SIZE


@dataclass
class StorageConfig:
    """Configuration for the local store."""

    instance_name: str = "default"
    db_path: str = "~/.hybridsync/store.db"


@dataclass
class RemoteConfig:
    """Configuration for the remote object store."""

    base_url: str = ""
    token: str | None = None
    page_size: int = MAX_PAGE_SIZE
    timeout_seconds: float = 30.0


@dataclass
class SyncConfig:
    """Configuration for the sync engine."""

    queue_name: str = "default"
    auto_push: bool = True
    sync_on_start: bool = True
    sync_interval_seconds: int = 300
    idle_timeout_seconds: float | None = None


@dataclass
class LoggingConfig:
    level: str = "info"
    json: bool = False


@dataclass
class Config:
    storage: StorageConfig = field(default_factory=StorageConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with HYBRIDSYNC_ prefix."""
    return os.environ.get(f"HYBRIDSYNC_{key}", default)


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Storage overrides
    if instance_name := _get_env("INSTANCE_NAME"):
        config.storage.instance_name = instance_name
    if db_path := _get_env("DB_PATH"):
        config.storage.db_path = db_path

    # Remote overrides
    if remote_url := _get_env("REMOTE_URL"):
        config.remote.base_url = remote_url
    if token := _get_env("REMOTE_TOKEN"):
        config.remote.token = token
    if page_size := _get_env("REMOTE_PAGE_SIZE"):
        config.remote.page_size = int(page_size)

    # Sync overrides
    if queue_name := _get_env("QUEUE_NAME"):
        config.sync.queue_name = queue_name
    if auto_push := _get_env("AUTO_PUSH"):
        config.sync.auto_push = _parse_bool(auto_push)
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.sync.sync_interval_seconds = int(sync_interval)

    # Logging overrides
    if log_level := _get_env("LOG_LEVEL"):
        config.logging.level = log_level.lower()
    if log_json := _get_env("LOG_JSON"):
        config.logging.json = _parse_bool(log_json)

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

            # Parse storage config
            if "storage" in data:
                storage_data = data["storage"]
                config.storage = StorageConfig(
                    instance_name=storage_data.get(
                        "instance_name", config.storage.instance_name
                    ),
                    db_path=storage_data.get("db_path", config.storage.db_path),
                )

            # Parse remote config
            if "remote" in data:
                remote_data = data["remote"]
                config.remote = RemoteConfig(
                    base_url=remote_data.get("base_url", config.remote.base_url),
                    token=remote_data.get("token"),
                    page_size=remote_data.get("page_size", config.remote.page_size),
                    timeout_seconds=remote_data.get(
                        "timeout_seconds", config.remote.timeout_seconds
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    queue_name=sync_data.get("queue_name", config.sync.queue_name),
                    auto_push=sync_data.get("auto_push", config.sync.auto_push),
                    sync_on_start=sync_data.get(
                        "sync_on_start", config.sync.sync_on_start
                    ),
                    sync_interval_seconds=sync_data.get(
                        "sync_interval_seconds", config.sync.sync_interval_seconds
                    ),
                    idle_timeout_seconds=sync_data.get(
                        "idle_timeout_seconds", config.sync.idle_timeout_seconds
                    ),
                )

            # Parse logging config
            if "logging" in data:
                log_data = data["logging"]
                config.logging = LoggingConfig(
                    level=str(log_data.get("level", config.logging.level)).lower(),
                    json=log_data.get("json", config.logging.json),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    # Listing pages are bounded by the object store
    config.remote.page_size = max(1, min(config.remote.page_size, MAX_PAGE_SIZE))

    return config
