"""Configuration management for onetouch."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml


@dataclass
class PairingConfig:
    """Pairing session configuration."""

    ttl_seconds: float = 120.0
    max_ttl_seconds: float = 3600.0  # Upper bound on a caller-requested ttl
    max_create_attempts: int = 5
    claim_base_url: str | None = None  # Static base for claim links, e.g. https://app.example


@dataclass
class StoreConfig:
    """Session store configuration."""

    backend: str = "memory"  # memory | sqlite
    path: str | None = None  # sqlite database file
    purge_grace_seconds: float = 600.0


@dataclass
class PollingConfig:
    """Initiator-side status polling configuration."""

    interval: float = 1.0  # seconds
    request_timeout: float = 5.0  # seconds


@dataclass
class RateLimitConfig:
    """Per-IP limits for the status and claim routes."""

    max_requests: int = 60
    window_seconds: int = 60


@dataclass
class Config:
    """Server and client configuration."""

    port: int = 8790
    bind_address: str = "0.0.0.0"
    server_url: str = "http://127.0.0.1:8790"
    log_level: str = "INFO"
    log_file: str | None = None
    pairing: PairingConfig = field(default_factory=PairingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "onetouch" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        return yaml.safe_load(content)
    except yaml.YAMLError:
        return None


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config object with values from file or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if not isinstance(data, dict):
        return Config()

    pairing_data = data.get("pairing") or {}
    pairing_config = PairingConfig(
        ttl_seconds=pairing_data.get("ttl_seconds", PairingConfig.ttl_seconds),
        max_ttl_seconds=pairing_data.get(
            "max_ttl_seconds", PairingConfig.max_ttl_seconds
        ),
        max_create_attempts=pairing_data.get(
            "max_create_attempts", PairingConfig.max_create_attempts
        ),
        claim_base_url=pairing_data.get("claim_base_url", PairingConfig.claim_base_url),
    )

    store_data = data.get("store") or {}
    store_config = StoreConfig(
        backend=store_data.get("backend", StoreConfig.backend),
        path=store_data.get("path", StoreConfig.path),
        purge_grace_seconds=store_data.get(
            "purge_grace_seconds", StoreConfig.purge_grace_seconds
        ),
    )

    polling_data = data.get("polling") or {}
    polling_config = PollingConfig(
        interval=polling_data.get("interval", PollingConfig.interval),
        request_timeout=polling_data.get(
            "request_timeout", PollingConfig.request_timeout
        ),
    )

    rate_limit_data = data.get("rate_limit") or {}
    rate_limit_config = RateLimitConfig(
        max_requests=rate_limit_data.get("max_requests", RateLimitConfig.max_requests),
        window_seconds=rate_limit_data.get(
            "window_seconds", RateLimitConfig.window_seconds
        ),
    )

    return Config(
        port=data.get("port", Config.port),
        bind_address=data.get("bind_address", Config.bind_address),
        server_url=data.get("server_url", Config.server_url),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        pairing=pairing_config,
        store=store_config,
        polling=polling_config,
        rate_limit=rate_limit_config,
    )
