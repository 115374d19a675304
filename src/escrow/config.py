"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./escrow.db"

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Ledger identity
    ESCROW_ADDRESS: str = "0x000000000000000000000000000000000000e5c0"
    ADMIN_ADDRESS: str = "0x0000000000000000000000000000000000000001"

    # Tokens registered on first start (symbol -> backing contract)
    INITIAL_TOKENS: dict[str, str] = {}

    # Deal resolution
    REFUND_ON_REJECT: bool = False  # Rejected deals keep the investment unless enabled
    MAX_SETTLEMENT_BATCH: int = 500

    # Recent events kept in memory; older history is served from the database
    EVENT_LOG_RETENTION: int = 10_000

    # JWT Authentication
    JWT_SECRET_KEY: str = "CHANGE-ME-IN-PRODUCTION-use-openssl-rand-hex-32"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
