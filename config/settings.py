"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. App-specific
settings use the ``SOSRADAR_`` prefix; infrastructure settings use
their canonical environment variable names via ``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the SOSRadar service.

    Environment variables are loaded from a ``.env`` file when present.
    App-specific keys are prefixed with ``SOSRADAR_``; infra keys use
    their standard names (configured via ``validation_alias``).
    """

    model_config = SettingsConfigDict(
        env_prefix="SOSRADAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── Redis ──────────────────────────────────────────────────────────
    # Empty string keeps all records in process memory.
    redis_url: str = Field(default="", validation_alias="REDIS_URL")

    # ── API ────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(default=8000, validation_alias="API_PORT")
    cors_origins: str = Field(default="", validation_alias="CORS_ORIGINS")

    # ── Auth ───────────────────────────────────────────────────────────
    admin_api_key: str = Field(default="", validation_alias="ADMIN_API_KEY")
    jwt_secret: str = Field(default="change-me", validation_alias="JWT_SECRET")
    jwt_algorithm: str = "HS256"

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Mass incident detection ────────────────────────────────────────
    mass_window_minutes: int = Field(default=10, gt=0)
    mass_radius_meters: float = Field(default=15.0, gt=0)
    mass_threshold: int = Field(default=8, ge=1)
    dependency_timeout_seconds: float = Field(default=5.0, gt=0)
    # Upper bound on holding (and waiting for) a band lock shared via Redis.
    lock_timeout_seconds: float = Field(default=10.0, gt=0)

    # ── Signal listing ─────────────────────────────────────────────────
    list_default_limit: int = 100
    list_max_limit: int = 500

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# Module-level singleton: import ``settings`` everywhere.
settings = Settings()
