"""Configuration loading for marksync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class RemoteConfig:
    """Remote bookmark store (PostgREST-style REST endpoint)."""

    url: str = "http://localhost:54321"
    table: str = "bookmarks"
    api_key: str | None = None
    timeout_seconds: float = 10.0
    fetch_max_retries: int = 3

    @property
    def rest_url(self) -> str:
        return f"{self.url.rstrip('/')}/rest/v1/{self.table}"


@dataclass
class MQTTConfig:
    """Push channel broker."""

    enabled: bool = True
    broker: str = "localhost"
    port: int = 1883
    topic_prefix: str = "marksync/bookmarks"
    username: str | None = None
    password: str | None = None
    keepalive: int = 60
    connect_timeout_seconds: float = 5.0


@dataclass
class AuthConfig:
    """Session owner used when the CLI signs in on start."""

    owner_id: str | None = None
    access_token: str | None = None


@dataclass
class SyncConfig:
    """Reconciliation settings."""

    poll_interval_seconds: float = 2.0
    grace_seconds: float | None = None  # Defaults to poll_interval_seconds

    @property
    def effective_grace_seconds(self) -> float:
        if self.grace_seconds is None:
            return self.poll_interval_seconds
        return self.grace_seconds


@dataclass
class Config:
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with MARKSYNC_ prefix."""
    return os.environ.get(f"MARKSYNC_{key}", default)


def _is_truthy(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Remote overrides
    if url := _get_env("REMOTE_URL"):
        config.remote.url = url
    if table := _get_env("REMOTE_TABLE"):
        config.remote.table = table
    if api_key := _get_env("REMOTE_API_KEY"):
        config.remote.api_key = api_key
    if timeout := _get_env("REMOTE_TIMEOUT"):
        config.remote.timeout_seconds = float(timeout)

    # MQTT overrides
    if enabled := _get_env("MQTT_ENABLED"):
        config.mqtt.enabled = _is_truthy(enabled)
    if broker := _get_env("MQTT_BROKER"):
        config.mqtt.broker = broker
    if port := _get_env("MQTT_PORT"):
        config.mqtt.port = int(port)
    if username := _get_env("MQTT_USERNAME"):
        config.mqtt.username = username
    if password := _get_env("MQTT_PASSWORD"):
        config.mqtt.password = password

    # Auth overrides
    if owner_id := _get_env("AUTH_OWNER_ID"):
        config.auth.owner_id = owner_id
    if token := _get_env("AUTH_TOKEN"):
        config.auth.access_token = token

    # Sync overrides
    if interval := _get_env("SYNC_INTERVAL"):
        config.sync.poll_interval_seconds = float(interval)
    if grace := _get_env("SYNC_GRACE"):
        config.sync.grace_seconds = float(grace)

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses defaults.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "remote" in data:
                remote_data = data["remote"]
                config.remote = RemoteConfig(
                    url=remote_data.get("url", config.remote.url),
                    table=remote_data.get("table", config.remote.table),
                    api_key=remote_data.get("api_key"),
                    timeout_seconds=remote_data.get(
                        "timeout_seconds", config.remote.timeout_seconds
                    ),
                    fetch_max_retries=remote_data.get(
                        "fetch_max_retries", config.remote.fetch_max_retries
                    ),
                )

            if "mqtt" in data:
                mqtt_data = data["mqtt"]
                config.mqtt = MQTTConfig(
                    enabled=mqtt_data.get("enabled", config.mqtt.enabled),
                    broker=mqtt_data.get("broker", config.mqtt.broker),
                    port=mqtt_data.get("port", config.mqtt.port),
                    topic_prefix=mqtt_data.get("topic_prefix", config.mqtt.topic_prefix),
                    username=mqtt_data.get("username"),
                    password=mqtt_data.get("password"),
                    keepalive=mqtt_data.get("keepalive", config.mqtt.keepalive),
                    connect_timeout_seconds=mqtt_data.get(
                        "connect_timeout_seconds", config.mqtt.connect_timeout_seconds
                    ),
                )

            if "auth" in data:
                auth_data = data["auth"]
                config.auth = AuthConfig(
                    owner_id=auth_data.get("owner_id"),
                    access_token=auth_data.get("access_token"),
                )

            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    poll_interval_seconds=sync_data.get(
                        "poll_interval_seconds", config.sync.poll_interval_seconds
                    ),
                    grace_seconds=sync_data.get("grace_seconds"),
                )

    return _apply_env_overrides(config)
