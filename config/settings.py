"""
Application settings loaded from environment variables.

All configurable values are centralized here — no hard-coded values elsewhere.
Uses pydantic-settings for type-safe .env loading.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration — loaded from .env / environment variables."""

    # ── General ──────────────────────────────────────────────────────────
    APP_NAME: str = "Codeunia Platform Telemetry Service"
    ENVIRONMENT: Environment = Environment.DEVELOPMENT
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False
    SITE_URL: str = "http://localhost:8000"

    # ── API Server ───────────────────────────────────────────────────────
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # ── Security ─────────────────────────────────────────────────────────
    JWT_SECRET: str = "change-me-in-production-please"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_MINUTES: int = 60
    RATE_LIMIT_RPM: int = 120  # requests per minute

    # ── RBAC default credentials (development only) ──────────────────────
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "admin"
    VIEWER_USERNAME: str = "viewer"
    VIEWER_PASSWORD: str = "viewer"

    # ── Analytics ledgers ────────────────────────────────────────────────
    ANALYTICS_MAX_EVENTS: int = Field(
        default=10_000,
        ge=1,
        description="Per-ledger capacity; oldest events are evicted first.",
    )
    ANALYTICS_DEFAULT_PERIOD_HOURS: float = Field(default=24.0, gt=0)
    ANALYTICS_MAX_PERIOD_HOURS: float = Field(default=24.0 * 30, gt=0)
    SLOW_QUERY_THRESHOLD_MS: float = 1000.0
    TOP_ROUTES_LIMIT: int = 20
    TOP_THREATS_LIMIT: int = 10
    RECENT_PERFORMANCE_EVENTS: int = 50
    RECENT_SECURITY_EVENTS: int = 100
    MAX_TEST_DATA_EVENTS: int = 5_000

    # ── IP auto-block ────────────────────────────────────────────────────
    AUTO_BLOCK_WINDOW_SECONDS: int = 3600
    AUTO_BLOCK_EVENT_THRESHOLD: int = 5

    # ── Razorpay ─────────────────────────────────────────────────────────
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = None

    # ── Supabase (PostgREST) ─────────────────────────────────────────────
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_KEY: Optional[str] = None
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # ── Resend (transactional email) ─────────────────────────────────────
    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "Codeunia <connect@codeunia.com>"

    # ── Cache ────────────────────────────────────────────────────────────
    REDIS_URL: Optional[str] = None
    CACHE_MAX_SIZE: int = 1000
    CACHE_WARMING_ENABLED: bool = True
    CACHE_WARMING_DEV: bool = False
    CACHE_WARMING_TOKEN: Optional[str] = None

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == Environment.PRODUCTION


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
