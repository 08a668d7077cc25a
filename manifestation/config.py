"""
Manifestation — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
every call-site receives the same validated instance without re-parsing the
environment.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the local data layer."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database – local SQLite file
    # ------------------------------------------------------------------ #
    DATABASE_URL: str = "sqlite+aiosqlite:///manifestation.db"

    # ------------------------------------------------------------------ #
    # Questionnaire
    # ------------------------------------------------------------------ #
    QUESTIONS_FILE: str = "questions.json"
    SESSION_TIMEOUT_MINUTES: int = 30

    # ------------------------------------------------------------------ #
    # History
    # ------------------------------------------------------------------ #
    HISTORY_PAGE_SIZE: int = 20

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @field_validator("HISTORY_PAGE_SIZE", "SESSION_TIMEOUT_MINUTES")
    @classmethod
    def _must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Value must be positive, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime::

        from manifestation.config import get_settings
        settings = get_settings()
    """
    return Settings()
