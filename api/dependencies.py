"""
AppContainer — every long-lived component of the service, wired once.

The container is built by ``main.create_app`` and stored on
``app.state.container``; routes receive components through the FastAPI
dependency getters below. Tests build their own container with a fake
clock, a static system probe and mock HTTP transports.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from fastapi import Request

from analytics.base import HOUR_MS, Clock
from analytics.performance import PerformanceAnalytics, PerformanceStrategy
from analytics.security import SecurityAnalytics, SecurityStrategy
from analytics.system import SystemProbe
from config.settings import Settings
from monitoring.forwarder import MonitoringForwarder
from payments.webhook import RazorpayWebhookProcessor
from services.cache import CacheStore
from services.cache_warmer import CacheWarmer
from services.database import PaymentRepository, SupabaseClient
from services.email import EmailClient

logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    """Process-wide component graph."""

    settings: Settings
    forwarder: MonitoringForwarder
    performance: PerformanceAnalytics
    security: SecurityAnalytics
    db: SupabaseClient
    email: EmailClient
    cache: CacheStore
    webhook: RazorpayWebhookProcessor
    cache_warmer: CacheWarmer

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        clock: Clock | None = None,
        probe: SystemProbe | None = None,
        cache: CacheStore | None = None,
        db_transport: httpx.AsyncBaseTransport | None = None,
        email_transport: httpx.AsyncBaseTransport | None = None,
    ) -> "AppContainer":
        forwarder = MonitoringForwarder(verbose=not settings.is_production)
        shared: dict[str, Any] = {
            "max_events": settings.ANALYTICS_MAX_EVENTS,
            "default_period_ms": settings.ANALYTICS_DEFAULT_PERIOD_HOURS * HOUR_MS,
            "clock": clock,
            "probe": probe,
            "forwarder": forwarder,
        }

        performance = PerformanceAnalytics(
            PerformanceStrategy(
                slow_query_threshold_ms=settings.SLOW_QUERY_THRESHOLD_MS,
                top_routes=settings.TOP_ROUTES_LIMIT,
                recent_limit=settings.RECENT_PERFORMANCE_EVENTS,
            ),
            **shared,
        )
        security = SecurityAnalytics(
            SecurityStrategy(
                top_threats=settings.TOP_THREATS_LIMIT,
                recent_limit=settings.RECENT_SECURITY_EVENTS,
            ),
            auto_block_window_ms=settings.AUTO_BLOCK_WINDOW_SECONDS * 1000,
            auto_block_threshold=settings.AUTO_BLOCK_EVENT_THRESHOLD,
            **shared,
        )

        db = SupabaseClient.from_settings(settings, transport=db_transport)
        email = EmailClient.from_settings(settings, transport=email_transport)
        cache = cache or CacheStore.from_settings(settings)

        container = cls(
            settings=settings,
            forwarder=forwarder,
            performance=performance,
            security=security,
            db=db,
            email=email,
            cache=cache,
            webhook=RazorpayWebhookProcessor(PaymentRepository(db), email),
            cache_warmer=CacheWarmer(db, cache),
        )
        logger.info(
            "Components wired (database: %s, email: %s, cache: %s)",
            "on" if db.configured else "off",
            "on" if email.configured else "off",
            cache.get_stats()["backend"],
        )
        return container

    async def aclose(self) -> None:
        await self.db.aclose()
        await self.cache.aclose()


# ── FastAPI dependencies ────────────────────────────────────────────────


def get_container(request: Request) -> AppContainer:
    return request.app.state.container


def get_app_settings(request: Request) -> Settings:
    return request.app.state.container.settings


def get_performance(request: Request) -> PerformanceAnalytics:
    return request.app.state.container.performance


def get_security(request: Request) -> SecurityAnalytics:
    return request.app.state.container.security


def get_webhook_processor(request: Request) -> RazorpayWebhookProcessor:
    return request.app.state.container.webhook


def get_cache_warmer(request: Request) -> CacheWarmer:
    return request.app.state.container.cache_warmer


def client_ip(request: Request) -> str:
    """Best-effort client address, preferring the first ``X-Forwarded-For`` hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
