"""Environment-driven settings for compose-spine.

``ComposeSpineSettings`` holds the knobs the lifecycle manager reads when the
caller does not pass them explicitly: driver call timeout, concurrency and
log defaults. Values resolve as keyword arguments > ``COMPOSE_SPINE_*``
environment variables > ``.env`` file > field defaults.

Examples:
    >>> import os
    >>> os.environ["COMPOSE_SPINE_MAX_PARALLEL"] = "8"
    >>> reset_settings()
    >>> get_settings().max_parallel
    8

Tags:
    settings, configuration, pydantic, environment, compose
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ComposeSpineSettings(BaseSettings):
    """compose-spine configuration.

    All fields can be set via ``COMPOSE_SPINE_*`` environment variables (e.g.
    ``COMPOSE_SPINE_DRIVER_TIMEOUT_SECONDS=30``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="COMPOSE_SPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Driver calls ─────────────────────────────────────────────
    driver_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Upper bound for a single runtime driver call",
    )
    max_parallel: int = Field(
        default=4,
        ge=1,
        description="Max services dispatched to the driver at once",
    )

    # ── Advisory reads ───────────────────────────────────────────
    default_log_lines: int = Field(default=100, ge=1)
    warning_history: int = Field(
        default=200,
        ge=1,
        description="Advisory warnings retained by the manager",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Read by configure_logging() when no level is passed",
    )
    log_format: Literal["json", "console"] = Field(default="json")
    service_name: str = Field(default="compose-spine")


@lru_cache(maxsize=1)
def get_settings() -> ComposeSpineSettings:
    """Return the cached process-wide settings."""
    return ComposeSpineSettings()


def reset_settings() -> None:
    """Drop the cached settings so the next ``get_settings()`` re-reads env."""
    get_settings.cache_clear()


__all__ = ["ComposeSpineSettings", "get_settings", "reset_settings"]
