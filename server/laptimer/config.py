"""Lap timer configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: LAPTIMER_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class TrackingConfig:
    min_interval_ms: int = 100
    accuracy_wait_interval_ms: int = 1000
    proximity_threshold_m: float = 4.0
    rearm_distance_m: float = 50.0
    rearm_cooldown_ms: int = 10_000
    coordinate_decimals: int = 6
    required_accuracy_m: float = 10.0


@dataclass
class StorageConfig:
    backend: str = "file"  # "file" or "memory"
    base_dir: str = "data/store"


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    mapping = {
        "LAPTIMER_SERVER_HOST": lambda v: setattr(config.server, "host", v),
        "LAPTIMER_SERVER_PORT": lambda v: setattr(config.server, "port", int(v)),
        "LAPTIMER_SERVER_ENV": lambda v: setattr(config.server, "env", v),
        "LAPTIMER_TRACKING_MIN_INTERVAL_MS": lambda v: setattr(config.tracking, "min_interval_ms", int(v)),
        "LAPTIMER_TRACKING_ACCURACY_WAIT_INTERVAL_MS": lambda v: setattr(config.tracking, "accuracy_wait_interval_ms", int(v)),
        "LAPTIMER_TRACKING_PROXIMITY_THRESHOLD_M": lambda v: setattr(config.tracking, "proximity_threshold_m", float(v)),
        "LAPTIMER_TRACKING_REARM_DISTANCE_M": lambda v: setattr(config.tracking, "rearm_distance_m", float(v)),
        "LAPTIMER_TRACKING_REARM_COOLDOWN_MS": lambda v: setattr(config.tracking, "rearm_cooldown_ms", int(v)),
        "LAPTIMER_TRACKING_REQUIRED_ACCURACY_M": lambda v: setattr(config.tracking, "required_accuracy_m", float(v)),
        "LAPTIMER_STORAGE_BACKEND": lambda v: setattr(config.storage, "backend", v),
        "LAPTIMER_STORAGE_BASE_DIR": lambda v: setattr(config.storage, "base_dir", v),
        "LAPTIMER_LOG_LEVEL": lambda v: setattr(config.logging, "level", v),
        "LAPTIMER_LOG_FORMAT": lambda v: setattr(config.logging, "format", v),
    }
    for env_key, setter in mapping.items():
        val = os.environ.get(env_key)
        if val is not None:
            setter(val)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    # Try to load YAML
    if config_path is None:
        config_path = Path(os.environ.get("LAPTIMER_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section in ("server", "tracking", "storage", "logging"):
            target = getattr(config, section)
            for k, v in (raw.get(section) or {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
