"""Service configuration loaded from LOOKOUT_* environment variables."""

from __future__ import annotations

from datetime import timedelta
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LookoutSettings(BaseSettings):
    """Lookout observability server settings.

    All fields are read from environment variables with the ``LOOKOUT_``
    prefix.  For example, ``LOOKOUT_MAX_EVENTS_PER_SESSION=500`` maps to
    ``max_events_per_session``.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOOKOUT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    environment: Literal["development", "production"] = "development"
    """In production, error messages surfaced to callers are generic."""

    # -- Session store ---------------------------------------------------------
    max_events_per_session: int = Field(default=1000, ge=1)
    """Per-session history cap; the oldest event is evicted on overflow."""

    session_timeout_seconds: int = 86_400
    """Sessions older than this (from creation) are expired with their history."""

    session_sweep_interval: int = 3600

    # -- Streaming -------------------------------------------------------------
    replay_buffer_size: int = Field(default=100, ge=1)
    replay_count: int = Field(default=20, ge=0)
    """How many buffered events a new stream receives on start."""

    slow_threshold_ms: float = 500
    stream_queue_size: int = Field(default=1000, ge=1)
    stream_retention_seconds: int = 3600
    """Stopped streams stay visible for this long before cleanup forgets them."""

    stream_cleanup_interval: int = 300

    # -- Health ----------------------------------------------------------------
    max_memory_mb: float = 512
    max_response_time_ms: float = 1000
    max_error_rate: float = 0.05
    metrics_retention: int = Field(default=300, ge=1)
    health_check_interval: int = 30

    # -- Resilience ------------------------------------------------------------
    operation_timeout_seconds: float = 30
    log_event_retries: int = Field(default=2, ge=0)
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_cooldown_seconds: float = 60

    # -- Helpers ---------------------------------------------------------------

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def session_timeout(self) -> timedelta:
        return timedelta(seconds=self.session_timeout_seconds)

    @property
    def stream_retention(self) -> timedelta:
        return timedelta(seconds=self.stream_retention_seconds)


def get_settings() -> LookoutSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> LookoutSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return LookoutSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
