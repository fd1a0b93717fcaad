"""Configuration loader for the redirect options service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv

DB_PATH_ENV = "REDIRECT_DB_PATH"


class StorageBackendKind(str, Enum):
    """Supported storage substrates."""

    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass
class StorageConfig:
    """Where rules, settings and metrics live.

    ``sync_enabled`` mirrors whether a cross-device synchronized area is
    available; without it rules and settings fall back to the local area.
    """

    backend: StorageBackendKind = StorageBackendKind.SQLITE
    db_path: Optional[str] = None
    sync_enabled: bool = True

    @property
    def resolved_db_path(self) -> str:
        env_path = os.getenv(DB_PATH_ENV)
        if env_path:
            return env_path
        if self.db_path:
            return self.db_path
        return str(Path(__file__).resolve().parents[1] / "storage" / "redirects.db")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "StorageConfig":
        if not data:
            return cls()
        payload = dict(data)
        if "backend" in payload:
            payload["backend"] = StorageBackendKind(payload["backend"])
        return cls(**payload)


@dataclass
class WatcherConfig:
    """Polling settings for cross-process change propagation."""

    poll_interval: float = 2.0

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError("watcher.poll_interval must be positive")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "WatcherConfig":
        if not data:
            return cls()
        return cls(**data)


@dataclass
class LoggingConfig:
    level: str = "INFO"

    @property
    def numeric_level(self) -> int:
        level = logging.getLevelName(self.level.upper())
        return level if isinstance(level, int) else logging.INFO

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "LoggingConfig":
        if not data:
            return cls()
        return cls(**data)


@dataclass
class AppConfig:
    """Top level configuration model."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "AppConfig":
        if not data:
            return cls()
        return cls(
            storage=StorageConfig.from_dict(data.get("storage")),
            watcher=WatcherConfig.from_dict(data.get("watcher")),
            logging=LoggingConfig.from_dict(data.get("logging")),
        )


def load_config(
    config_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
) -> AppConfig:
    """Load configuration from YAML and environment variables.

    A missing config file is not an error: every section has defaults.
    """

    base_path = Path(__file__).resolve().parents[1]
    if config_path is None:
        config_path = base_path / "config.yaml"
    if env_path is None:
        default_env = base_path / ".env"
        if default_env.exists():
            env_path = default_env

    if env_path is not None:
        load_dotenv(dotenv_path=env_path, override=False)

    if not Path(config_path).exists():
        return AppConfig()

    with open(config_path, "r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}

    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a mapping at the top level")
    return AppConfig.from_dict(data)
