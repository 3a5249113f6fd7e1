"""Configuration management using Pydantic Settings.

All values can be overridden via environment variables prefixed with
``FORGET_`` (``FORGET_REDIS_HOST``, ``FORGET_NWORKERS``, ...) or a ``.env``
file.

The store endpoint accepts either a Redis URL (``redis://host:port/db``) or
the legacy ``host:port:db`` triple; :func:`resolve_redis_url` normalizes both
and raises :class:`~forget_spine.core.errors.InvalidConfigError` for anything
else.
"""

from __future__ import annotations

from typing import Literal
from urllib.parse import urlparse

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from forget_spine.core.errors import InvalidConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FORGET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Store ────────────────────────────────────────────────────────────
    store_backend: Literal["redis", "memory"] = "redis"
    redis_host: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL or host:port:db",
    )
    store_timeout: float | None = Field(
        default=5.0,
        gt=0,
        description="Deadline in seconds for every store round trip (None disables)",
    )
    request_connections: int = Field(
        default=8,
        ge=1,
        description="Pool connections reserved for request handlers on top of one per worker",
    )

    # ── Decay ────────────────────────────────────────────────────────────
    default_rate: float = Field(default=0.5, gt=0, le=1)
    decay_interval: float = Field(
        default=1.0,
        gt=0,
        description="Seconds per decay step; rate is applied once per step",
    )

    # ── Update pipeline ──────────────────────────────────────────────────
    nworkers: int = Field(default=1, ge=1)
    queue_size: int = Field(default=10, ge=1, description="Capacity of each worker queue")
    overflow_policy: Literal["block", "drop_oldest", "reject"] = "block"
    max_conflict_retries: int = Field(default=3, ge=0)

    # ── API ──────────────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 6666

    # ── Logging ──────────────────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "console"

    @property
    def store_pool_size(self) -> int:
        """One connection per worker plus the request headroom."""
        return self.nworkers + self.request_connections


def resolve_redis_url(value: str) -> str:
    """Normalize a store endpoint to a ``redis://`` URL.

    >>> resolve_redis_url("localhost:6379:2")
    'redis://localhost:6379/2'
    """
    value = value.strip()
    if "://" in value:
        parsed = urlparse(value)
        if parsed.scheme not in ("redis", "rediss", "unix") or not (parsed.hostname or parsed.path):
            raise InvalidConfigError("redis_host", value)
        return value

    parts = value.split(":")
    if len(parts) != 3:
        raise InvalidConfigError(
            "redis_host", value, "redis_host must be a redis:// URL or in the form host:port:db"
        )
    host, port, db = parts
    if not host or not port.isdigit() or not db.isdigit():
        raise InvalidConfigError("redis_host", value)
    return f"redis://{host}:{port}/{db}"


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (for testing)."""
    global _settings
    _settings = None
