"""Configuration loading for treemirror."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ProducerConfig:
    """Configuration for the producer side of the sync."""

    name: str = "treemirror-producer"
    server_url: str = "http://localhost:8080"
    transport: str = "http"  # "http" or "mqtt"
    source_path: str = "tree.json"
    sync_interval_seconds: float = 0.5
    batch_size: int = 2000
    batch_pause_seconds: float = 0.05
    heartbeat_interval_seconds: float = 10.0
    request_timeout_seconds: float = 60.0
    retry_max_attempts: int = 2
    max_depth: int = 64
    max_nodes: int = 200_000


@dataclass
class ConsumerConfig:
    """Configuration for the consumer (ingestion) side."""

    host: str = "0.0.0.0"
    port: int = 8080
    connection_timeout_seconds: float = 30.0
    liveness_check_seconds: float = 5.0
    queue_size: int = 1000
    mqtt_enabled: bool = False


@dataclass
class ReconcilerConfig:
    """How the flat collection is turned into a tree."""

    root_path: str = "game"
    root_type: str = "DataModel"
    placeholder_type: str = "Folder"
    well_known_containers: list[str] = field(
        default_factory=lambda: [
            "Workspace",
            "Players",
            "Lighting",
            "ReplicatedStorage",
            "ServerStorage",
            "StarterGui",
            "StarterPlayer",
            "StarterPack",
        ]
    )


@dataclass
class CodecConfig:
    """Compression of delta payloads on the HTTP transport."""

    enabled: bool = False
    level: int = 1


@dataclass
class MQTTConfig:
    broker: str = "localhost"
    port: int = 1883
    topic_prefix: str = "treemirror"
    username: str | None = None
    password: str | None = None

    @property
    def sync_topic(self) -> str:
        return f"{self.topic_prefix}/sync"


@dataclass
class Config:
    producer: ProducerConfig = field(default_factory=ProducerConfig)
    consumer: ConsumerConfig = field(default_factory=ConsumerConfig)
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)
    codec: CodecConfig = field(default_factory=CodecConfig)
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with TREEMIRROR_ prefix."""
    return os.environ.get(f"TREEMIRROR_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Producer overrides
    if name := _get_env("PRODUCER_NAME"):
        config.producer.name = name
    if server_url := _get_env("SERVER_URL"):
        config.producer.server_url = server_url
    if transport := _get_env("TRANSPORT"):
        config.producer.transport = transport
    if source_path := _get_env("SOURCE_PATH"):
        config.producer.source_path = source_path
    if interval := _get_env("SYNC_INTERVAL"):
        config.producer.sync_interval_seconds = float(interval)
    if batch_size := _get_env("BATCH_SIZE"):
        config.producer.batch_size = int(batch_size)
    if batch_pause := _get_env("BATCH_PAUSE"):
        config.producer.batch_pause_seconds = float(batch_pause)

    # Consumer overrides
    if host := _get_env("HOST"):
        config.consumer.host = host
    if port := _get_env("PORT"):
        config.consumer.port = int(port)
    if timeout := _get_env("CONNECTION_TIMEOUT"):
        config.consumer.connection_timeout_seconds = float(timeout)
    if mqtt_enabled := _get_env("CONSUMER_MQTT"):
        config.consumer.mqtt_enabled = _is_true(mqtt_enabled)

    # Reconciler overrides
    if root_path := _get_env("ROOT_PATH"):
        config.reconciler.root_path = root_path

    # Codec overrides
    if compression := _get_env("COMPRESSION"):
        config.codec.enabled = _is_true(compression)

    # MQTT overrides
    if broker := _get_env("MQTT_BROKER"):
        config.mqtt.broker = broker
    if port := _get_env("MQTT_PORT"):
        config.mqtt.port = int(port)
    if username := _get_env("MQTT_USERNAME"):
        config.mqtt.username = username
    if password := _get_env("MQTT_PASSWORD"):
        config.mqtt.password = password

    return config


def _merge_section(section: Any, data: dict[str, Any]) -> Any:
    """Return a copy of a dataclass section with known keys from data."""
    known = {k: v for k, v in data.items() if k in section.__dataclass_fields__}
    return type(section)(**{**section.__dict__, **known})


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

            if "producer" in data:
                config.producer = _merge_section(config.producer, data["producer"])

            if "consumer" in data:
                config.consumer = _merge_section(config.consumer, data["consumer"])

            if "reconciler" in data:
                config.reconciler = _merge_section(
                    config.reconciler, data["reconciler"]
                )

            if "codec" in data:
                config.codec = _merge_section(config.codec, data["codec"])

            if "mqtt" in data:
                config.mqtt = _merge_section(config.mqtt, data["mqtt"])

    return _apply_env_overrides(config)
