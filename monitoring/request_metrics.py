"""
RequestMetricsMiddleware — request ids and per-request timing.

Assigns every request an id (``X-Request-ID``, honouring an inbound
header), times the downstream handler, and records a performance event
on the app's performance ledger. Excluded paths are timed but not
recorded.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
RESPONSE_TIME_HEADER = "X-Response-Time"


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """Request id propagation and performance recording."""

    def __init__(self, app: Any, exclude_paths: Iterable[str] = ("/health",)) -> None:
        super().__init__(app)
        self._exclude = set(exclude_paths)

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            # Unhandled errors surface as 500s from the outer error middleware.
            elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
            if request.url.path not in self._exclude:
                self._record(request, 500, elapsed_ms)
            logger.debug(
                "[%s] %s %s -> unhandled error (%.2fms)",
                request_id, request.method, request.url.path, elapsed_ms,
            )
            raise
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[RESPONSE_TIME_HEADER] = f"{elapsed_ms}ms"

        if request.url.path not in self._exclude:
            self._record(request, response.status_code, elapsed_ms)

        logger.debug(
            "[%s] %s %s -> %d (%.2fms)",
            request_id, request.method, request.url.path, response.status_code, elapsed_ms,
        )
        return response

    @staticmethod
    def _record(request: Request, status_code: int, elapsed_ms: float) -> None:
        container = getattr(request.app.state, "container", None)
        if container is None:
            return
        route = request.scope.get("route")
        container.performance.record_event(
            route=getattr(route, "path", None) or request.url.path,
            method=request.method,
            response_time_ms=elapsed_ms,
            status_code=status_code,
            user_agent=request.headers.get("user-agent"),
        )
