"""
Configuration models and YAML loader.

Durations accept plain seconds (``30``) or a suffixed string (``"500ms"``,
``"30s"``, ``"5m"``, ``"1h"``).
"""

import re
from pathlib import Path
from typing import Annotated, Any

import yaml
from loguru import logger
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


class ConfigError(Exception):
    """Configuration could not be loaded."""

    pass


def parse_duration(value: Any) -> Any:
    """Convert ``"5m"``-style strings to seconds; pass numbers through."""
    if isinstance(value, str):
        match = _DURATION_RE.match(value)
        if not match:
            raise ValueError(f"invalid duration: {value!r}")
        amount, unit = match.groups()
        return float(amount) * _DURATION_UNITS[unit]
    return value


Seconds = Annotated[float, BeforeValidator(parse_duration)]


class _KebabModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class APISourceConfig(_KebabModel):
    """One upstream integration."""

    base_url: str = Field(alias="base-url")
    rate_limit: int = Field(default=0, ge=0, alias="rate-limit")
    timeout: Seconds = 10.0
    headers: dict[str, str] = Field(default_factory=dict)
    token: str = ""
    fallbacks: list[str] = Field(default_factory=list)


class RateLimitConfig(_KebabModel):
    """Token bucket limits; ``services`` overrides ``default_limit`` per name."""

    default_limit: int = Field(default=60, ge=0, alias="default-limit")
    window: Seconds = 60.0
    services: dict[str, int] = Field(default_factory=dict)


class CacheConfig(_KebabModel):
    type: str = "memory"  # memory | disk | redis
    ttl: Seconds = 300.0
    max_size: int = Field(default=64 * 1024 * 1024, ge=0, alias="max-size")
    sweep_interval: Seconds = Field(default=300.0, alias="sweep-interval")
    directory: str = ".feedboard-cache"
    redis_url: str = Field(default="redis://localhost:6379/0", alias="redis-url")


class PerformanceConfig(_KebabModel):
    """Worker pool sizing and process tuning. Zero means "use the default"."""

    max_workers: int = Field(default=0, ge=0, alias="max-workers")
    worker_idle_timeout: Seconds = Field(default=0.0, alias="worker-idle-timeout")
    queue_size: int = Field(default=0, ge=0, alias="queue-size")
    gc_percent: int = Field(default=0, ge=0, alias="gc-percent")
    max_memory_mb: int = Field(default=0, ge=0, alias="max-memory-mb")
    monitor_interval: Seconds = Field(default=30.0, alias="monitor-interval")


class WidgetConfig(_KebabModel):
    """A widget instance on the dashboard."""

    type: str
    name: str | None = None
    refresh_minutes: int = Field(default=15, ge=1, alias="refresh-minutes")
    options: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.name or self.type


class AppConfig(_KebabModel):
    api_sources: dict[str, APISourceConfig] = Field(
        default_factory=dict, alias="api-sources"
    )
    rate_limit: RateLimitConfig = Field(
        default_factory=RateLimitConfig, alias="rate-limit"
    )
    cache: CacheConfig = Field(default_factory=CacheConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    widgets: list[WidgetConfig] = Field(default_factory=list)

    def model_post_init(self, __context: Any) -> None:
        # Per-source limits fill the rate limiter's table unless set there
        for name, source in self.api_sources.items():
            if source.rate_limit and name not in self.rate_limit.services:
                self.rate_limit.services[name] = source.rate_limit


def load_config(path: str | Path) -> AppConfig:
    """Load and validate a YAML configuration file."""
    config_path = Path(path)
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Failed to read config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config file {config_path}: {e}") from e

    try:
        config = AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config file {config_path}: {e}") from e

    logger.info(
        f"Loaded config from {config_path}: {len(config.api_sources)} sources, "
        f"{len(config.widgets)} widgets"
    )
    return config
