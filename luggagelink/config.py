"""
Configuration and settings for the LuggageLink backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Session key holding the signed-in user id; read by HTTP auth and the relay.
SESSION_USER_KEY = "user_id"


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LUGGAGELINK_",
        extra="ignore",
    )

    api_prefix: str = Field(default="/api")

    # Database (Postgres expected); unset means in-memory
    database_url: Optional[str] = Field(
        default=None, validation_alias="DATABASE_URL"
    )

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Sessions
    session_secret: str = Field(default="luggagelink-dev-secret")
    session_max_age: int = Field(default=14 * 24 * 60 * 60)
    session_cookie: str = Field(default="luggagelink_session")

    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Reject status regressions on deliveries and payments
    enforce_status_transitions: bool = Field(default=True)

    log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
