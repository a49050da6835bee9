"""
RateLimiter — token-bucket rate limiter for FastAPI.

Configurable requests-per-minute per client IP. Rejections return 429
and are recorded as ``rate_limit_exceeded`` security events.
Implemented as ASGI middleware.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from typing import Any, Callable, Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from config.settings import get_settings
from core.error_handler import sanitize_error
from core.exceptions import RateLimitExceededError
from events.event_models import EventSeverity, SecurityEventType

logger = logging.getLogger(__name__)


class RateLimiter(BaseHTTPMiddleware):
    """Token-bucket rate limiter middleware.

    Tracks requests per client IP and returns 429 when the
    configured RPM is exceeded.
    """

    def __init__(
        self,
        app: Any,
        rpm: int | None = None,
        exempt_paths: Iterable[str] = ("/health",),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(app)
        self._rpm = rpm if rpm is not None else get_settings().RATE_LIMIT_RPM
        self._exempt = set(exempt_paths)
        self._clock = clock
        self._buckets: dict[str, dict[str, float]] = defaultdict(
            lambda: {"tokens": float(self._rpm), "last_refill": self._clock()}
        )

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        """Check rate limit before processing the request."""
        if request.url.path in self._exempt:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        bucket = self._buckets[client_ip]

        # Refill tokens
        now = self._clock()
        elapsed = now - bucket["last_refill"]
        refill = elapsed * (self._rpm / 60.0)  # tokens per second
        bucket["tokens"] = min(self._rpm, bucket["tokens"] + refill)
        bucket["last_refill"] = now

        if bucket["tokens"] < 1.0:
            logger.warning("Rate limit exceeded for IP %s", client_ip)
            self._record_violation(request, client_ip)
            status_code, body = sanitize_error(
                RateLimitExceededError(),
                request_id=getattr(request.state, "request_id", None),
                production=_settings(request).is_production,
            )
            body["retry_after_seconds"] = max(1, int(60 / self._rpm))
            return JSONResponse(
                status_code=status_code,
                content=body,
                headers={"Retry-After": str(body["retry_after_seconds"])},
            )

        # Consume a token
        bucket["tokens"] -= 1.0
        return await call_next(request)

    @staticmethod
    def _record_violation(request: Request, client_ip: str) -> None:
        container = getattr(request.app.state, "container", None)
        if container is None:
            return
        container.security.record_event(
            event_type=SecurityEventType.RATE_LIMIT_EXCEEDED,
            severity=EventSeverity.MEDIUM,
            ip=client_ip,
            user_agent=request.headers.get("user-agent"),
            route=request.url.path,
            description="Request rate limit exceeded",
            metadata={"method": request.method},
        )


def _settings(request: Request) -> Any:
    return getattr(request.app.state, "settings", None) or get_settings()
