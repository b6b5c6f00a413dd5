"""Configuration management for the URL shortener application.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortener.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    length = settings.SHORT_CODE_LENGTH

**Step 3 — Override in tests**::
    settings = Settings(DATABASE_URL="sqlite+aiosqlite:///test.db", CACHE_ENABLED=False)

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Short-code charset and prefix must be alphanumeric; anything else fails at load time.
- Rate-limit values are declared for the external rate limiter and not read by the core.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["SHORT_CODE_MAX_LENGTH", "Settings", "get_settings"]

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE62_CHARSET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
SHORT_CODE_MAX_LENGTH = 40


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    DATABASE_ECHO: bool = False
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis redirect cache
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_TTL_SECONDS: int = 3600

    # Short code config
    SHORT_CODE_LENGTH: int = 6
    SHORT_CODE_CHARSET: str = BASE62_CHARSET
    SHORT_CODE_PREFIX: str = ""
    CUSTOM_CODE_MIN_LENGTH: int = 3
    CUSTOM_CODE_MAX_LENGTH: int = 20
    MAX_URL_LENGTH: int = 2048
    DESCRIPTION_MAX_LENGTH: int = 500

    # Allocation retry bounds
    CODE_GENERATION_MAX_ATTEMPTS: int = 10
    ALLOCATION_CONFLICT_RETRIES: int = 1

    # Listing and analytics
    LIST_DEFAULT_LIMIT: int = 20
    LIST_MAX_LIMIT: int = 100
    ANALYTICS_TOP_N: int = 10
    ANALYTICS_RECENT_ACCESS_LIMIT: int = 100
    ANALYTICS_TOP_ITEMS: int = 5

    # Owned by the upstream rate limiter
    RATE_LIMIT_WINDOW_SECONDS: int = 900
    RATE_LIMIT_MAX_REQUESTS: int = 100

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    @field_validator("SHORT_CODE_CHARSET")
    @classmethod
    def validate_charset(cls, v: str) -> str:
        if len(v) < 2 or not v.isascii() or not v.isalnum():
            raise ValueError("SHORT_CODE_CHARSET must contain at least two ASCII alphanumeric characters")
        if len(set(v)) != len(v):
            raise ValueError("SHORT_CODE_CHARSET must not repeat characters")
        return v

    @field_validator("SHORT_CODE_PREFIX")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if v and not (v.isascii() and v.isalnum()):
            raise ValueError("SHORT_CODE_PREFIX must be alphanumeric")
        return v

    @field_validator("SHORT_CODE_LENGTH", "CODE_GENERATION_MAX_ATTEMPTS", "LIST_MAX_LIMIT")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @model_validator(mode="after")
    def validate_code_lengths(self) -> "Settings":
        if len(self.SHORT_CODE_PREFIX) + self.SHORT_CODE_LENGTH > SHORT_CODE_MAX_LENGTH:
            raise ValueError(
                f"SHORT_CODE_PREFIX plus SHORT_CODE_LENGTH must not exceed {SHORT_CODE_MAX_LENGTH} characters"
            )
        if not 1 <= self.CUSTOM_CODE_MIN_LENGTH <= self.CUSTOM_CODE_MAX_LENGTH <= SHORT_CODE_MAX_LENGTH:
            raise ValueError(
                f"custom code bounds must satisfy 1 <= CUSTOM_CODE_MIN_LENGTH <= CUSTOM_CODE_MAX_LENGTH "
                f"<= {SHORT_CODE_MAX_LENGTH}"
            )
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
