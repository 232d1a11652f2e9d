"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class DatabaseConfig(BaseModel):
    """Relational store holding alerts, devices and the notifications log."""

    path: str = "data/stockly.db"


class StateStoreConfig(BaseModel):
    """Alert trigger-state persistence (key-value store + write coalescing)."""

    backend: str = "sqlite"  # "sqlite", "memory" or "none"
    path: str = "data/alerts_kv.db"
    key_prefix: str = "alert:"
    min_flush_interval_secs: float = 3600.0
    cache_ttl_secs: float = 3600.0


class PricesConfig(BaseModel):
    """FMP quote API configuration."""

    base_url: str = "https://financialmodelingprep.com/stable"
    api_key: SecretStr = SecretStr("")
    timeout_secs: float = 20.0
    max_concurrency: int = 5
    transport_retries: int = 2


class FcmConfig(BaseModel):
    """Firebase Cloud Messaging HTTP v1 configuration."""

    service_account_json: SecretStr = SecretStr("")
    service_account_path: str = ""
    api_base: str = "https://fcm.googleapis.com/v1/projects"
    token_url: str = "https://oauth2.googleapis.com/token"
    scope: str = "https://www.googleapis.com/auth/firebase.messaging"
    timeout_secs: float = 20.0
    max_attempts: int = 3
    retry_delays_ms: list[int] = [200, 500, 1000]


class WorkingHoursConfig(BaseModel):
    """Operating window outside of which the alert cron is a no-op."""

    enabled: bool = False
    start_hour: int = 10
    end_hour: int = 23
    timezone: str = "Europe/Madrid"


class CronConfig(BaseModel):
    """Alert cron scheduling."""

    enabled: bool = True
    interval_secs: float = 300.0
    max_concurrent_dispatches: int = 10


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    """Root settings container."""

    database: DatabaseConfig = DatabaseConfig()
    state_store: StateStoreConfig = StateStoreConfig()
    prices: PricesConfig = PricesConfig()
    fcm: FcmConfig = FcmConfig()
    working_hours: WorkingHoursConfig = WorkingHoursConfig()
    cron: CronConfig = CronConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
