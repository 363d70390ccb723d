"""
Configuration and settings for the volunteer hub backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from volunteer_backend.types import BackendType


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    # Backend selection
    default_backend: BackendType = Field(default=BackendType.SQL)

    # Relational store (any SQLAlchemy URL; Oracle or Postgres in production)
    database_url: str = Field(default="sqlite+pysqlite:///./volunteer_hub.db")
    db_pool_min: int = Field(default=1, ge=1)
    db_pool_max: int = Field(default=5, ge=1)
    db_pool_timeout_seconds: float = Field(default=120.0, gt=0)

    # Document store
    mongodb_uri: str = Field(default="mongodb://localhost:27017/volunteer_db")
    mongodb_db_name: Optional[str] = Field(default=None)

    # Session tokens
    jwt_secret: str = Field(default="dev-secret-change-me")
    jwt_algorithm: str = Field(default="HS256")
    jwt_expires_seconds: int = Field(default=60 * 60 * 24 * 7, gt=0)

    @property
    def secure_cookies(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
