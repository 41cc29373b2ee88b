"""
Configuration and settings for the social events backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, alias="SOCIAL_EVENTS_USE_IN_MEMORY_BACKENDS"
    )

    # HTTP
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000, alias="PORT")

    # Logging
    log_level: str = Field(default="INFO")
    log_requests: bool = Field(default=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
