"""
Platform Telemetry Service — Application Entry Point.

Creates the FastAPI application, wires up all components into an
``AppContainer`` and mounts middleware (CORS, request metrics, rate
limiting) and the structured error handlers.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import AppContainer
from api.routes import router
from config.settings import Settings, get_settings
from core.error_handler import register_exception_handlers
from monitoring.request_metrics import RequestMetricsMiddleware
from security.rate_limiter import RateLimiter

# ── Logging setup ───────────────────────────────────────────────────────

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)-35s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)

logger = logging.getLogger("platform")


# ── Application factory ────────────────────────────────────────────────


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[AppContainer] = None,
) -> FastAPI:
    """Build the application.

    Tests pass their own ``settings`` and a ``container`` wired with a
    fake clock and mock transports.
    """
    settings = settings or get_settings()
    container = container or AppContainer.build(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        logger.info("═══ Starting %s ═══", settings.APP_NAME)
        logger.info(
            "Environment: %s | Ledger capacity: %d events",
            settings.ENVIRONMENT.value,
            settings.ANALYTICS_MAX_EVENTS,
        )
        yield
        await container.aclose()
        logger.info("═══ Shutting down %s ═══", settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Request performance and security-event analytics for the community "
            "platform, with payment webhook ingestion and cache warming."
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.container = container

    # ── Middleware (last added runs first) ──────────────────────────────

    app.add_middleware(RateLimiter, rpm=settings.RATE_LIMIT_RPM)
    app.add_middleware(RequestMetricsMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app(settings)


# ── CLI entry point ─────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
