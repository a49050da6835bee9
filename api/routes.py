"""
FastAPI routes for the platform telemetry service.

Endpoints:
  GET  /health                        — Health check (public)
  POST /auth/token                    — Login and get JWT
  GET  /admin/performance             — Performance analytics (Admin/Viewer)
  GET  /admin/performance/export      — Performance export, JSON or CSV
  GET  /admin/performance/health      — Performance health score
  POST /admin/performance/test-data   — Generate synthetic events (Admin)
  GET  /admin/security                — Security analytics (Admin/Viewer)
  GET  /admin/security/export         — Security export, JSON or CSV
  POST /admin/security/resolve        — Resolve a security event (Admin)
  GET  /admin/security/blocked-ips    — Auto-blocked IPs
  POST /admin/security/test-data      — Generate synthetic events (Admin)
  GET  /api/cache-warm                — Cache warming status
  POST /api/cache-warm                — Run cache warming
  POST /api/webhooks/razorpay         — Payment webhook (GET/HEAD: status)
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response

from analytics.base import WindowedAnalytics
from analytics.export import CONTENT_TYPES, ExportFormat
from analytics.performance import PerformanceAnalytics
from analytics.security import SecurityAnalytics
from api.dependencies import (
    client_ip,
    get_app_settings,
    get_cache_warmer,
    get_performance,
    get_security,
    get_webhook_processor,
)
from api.schemas import (
    ApiMessage,
    BlockedIPsResponse,
    HealthResponse,
    ResolveEventRequest,
    ResolveEventResponse,
    TestDataRequest,
    TestDataResponse,
    TokenRequest,
    TokenResponse,
)
from config.settings import Settings
from core.exceptions import (
    ConfigurationError,
    NotFoundError,
    SecurityError,
    SignatureVerificationError,
    ValidationError,
)
from events.event_models import EventSeverity, SecurityEventType
from payments.webhook import (
    SIGNATURE_HEADER,
    SUPPORTED_EVENTS,
    RazorpayWebhookProcessor,
    verify_signature,
)
from security.auth import (
    Role,
    authenticate_user,
    create_token,
    get_current_user,
    record_login_outcome,
    require_role,
)
from security.validation import (
    validate_event_type,
    validate_export_format,
    validate_period_hours,
    validate_severity,
    validate_test_data_count,
)
from services.cache_warmer import CacheWarmer

logger = logging.getLogger(__name__)

router = APIRouter()

NO_CACHE_HEADERS = {"Cache-Control": "no-cache, no-store, must-revalidate"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _export_response(
    analytics: WindowedAnalytics[Any],
    export_format: ExportFormat,
    period_ms: float,
    filename_stem: str,
    **filters: Any,
) -> Response:
    content = analytics.export_events(export_format, period_ms, **filters)
    filename = f"{filename_stem}-{datetime.now(timezone.utc).date().isoformat()}.{export_format.value}"
    return Response(
        content=content,
        media_type=CONTENT_TYPES[export_format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ── Public endpoints ────────────────────────────────────────────────────


@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check",
)
async def health_check(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    """Return the service health status."""
    return HealthResponse(
        service=settings.APP_NAME,
        environment=settings.ENVIRONMENT.value,
        timestamp=_now_iso(),
    )


# ── Authentication ──────────────────────────────────────────────────────


@router.post(
    "/auth/token",
    response_model=TokenResponse,
    tags=["Authentication"],
    summary="Login and get JWT token",
)
async def login(
    body: TokenRequest,
    request: Request,
    settings: Settings = Depends(get_app_settings),
    security: SecurityAnalytics = Depends(get_security),
) -> TokenResponse:
    """Authenticate and receive a JWT token."""
    ip = client_ip(request)
    user_agent = request.headers.get("user-agent")

    try:
        user = authenticate_user(body.username, body.password, settings)
    except SecurityError:
        record_login_outcome(
            security, username=body.username, ip=ip, success=False, user_agent=user_agent
        )
        raise

    record_login_outcome(
        security,
        username=user["username"],
        ip=ip,
        success=True,
        role=user["role"],
        user_agent=user_agent,
    )
    return TokenResponse(
        access_token=create_token(user["username"], user["role"], settings),
        expires_in_minutes=settings.JWT_EXPIRY_MINUTES,
        role=user["role"].value,
    )


# ── Performance analytics ───────────────────────────────────────────────


@router.get(
    "/admin/performance",
    tags=["Performance"],
    summary="Detailed performance analytics",
)
async def performance_analytics(
    period: float = Query(24.0, description="Window length in hours"),
    format: str = Query("json", description="json or csv"),
    route: Optional[str] = Query(None, description="Only this route"),
    method: Optional[str] = Query(None, description="Only this HTTP method"),
    settings: Settings = Depends(get_app_settings),
    performance: PerformanceAnalytics = Depends(get_performance),
    user: dict[str, Any] = Depends(get_current_user),
) -> Any:
    """Stats, per-route breakdown, health and recent requests for the window.

    ``format=csv`` returns the raw window as CSV instead.
    """
    period_ms = validate_period_hours(period, settings.ANALYTICS_MAX_PERIOD_HOURS)
    export_format = validate_export_format(format)
    if export_format is ExportFormat.CSV:
        return _export_response(
            performance, export_format, period_ms, "performance-metrics",
            route=route, method=method,
        )
    return performance.get_detailed_analytics(period_ms, route=route, method=method)


@router.get(
    "/admin/performance/export",
    tags=["Performance"],
    summary="Export performance events",
)
async def export_performance(
    period: float = Query(24.0, description="Window length in hours"),
    format: str = Query("json", description="json or csv"),
    route: Optional[str] = Query(None),
    method: Optional[str] = Query(None),
    settings: Settings = Depends(get_app_settings),
    performance: PerformanceAnalytics = Depends(get_performance),
    user: dict[str, Any] = Depends(get_current_user),
) -> Response:
    period_ms = validate_period_hours(period, settings.ANALYTICS_MAX_PERIOD_HOURS)
    return _export_response(
        performance, validate_export_format(format), period_ms, "performance-metrics",
        route=route, method=method,
    )


@router.get(
    "/admin/performance/health",
    tags=["Performance"],
    summary="System health score",
)
async def performance_health(
    period: float = Query(1.0, description="Window length in hours"),
    settings: Settings = Depends(get_app_settings),
    performance: PerformanceAnalytics = Depends(get_performance),
    user: dict[str, Any] = Depends(get_current_user),
) -> dict[str, Any]:
    period_ms = validate_period_hours(period, settings.ANALYTICS_MAX_PERIOD_HOURS)
    return {
        "health": performance.assess_health(period_ms).to_dict(),
        "stats": performance.get_stats(period_ms),
    }


@router.post(
    "/admin/performance/test-data",
    response_model=TestDataResponse,
    tags=["Performance"],
    summary="Generate synthetic performance events",
)
async def performance_test_data(
    body: TestDataRequest,
    settings: Settings = Depends(get_app_settings),
    performance: PerformanceAnalytics = Depends(get_performance),
    user: dict[str, Any] = Depends(require_role(Role.ADMIN)),
) -> TestDataResponse:
    """Requires Admin role."""
    count = validate_test_data_count(body.count, settings.MAX_TEST_DATA_EVENTS)
    generated = performance.generate_test_data(count, seed=body.seed)
    logger.info("User '%s' generated %d performance events", user.get("username"), generated)
    return TestDataResponse(generated=generated, total_events=len(performance))


# ── Security analytics ──────────────────────────────────────────────────


@router.get(
    "/admin/security",
    tags=["Security"],
    summary="Security analytics dashboard",
)
async def security_analytics(
    period: float = Query(24.0, description="Window length in hours"),
    severity: Optional[str] = Query(None, description="low, medium, high, critical or all"),
    type: Optional[str] = Query(None, description="Security event type or all"),
    format: str = Query("json", description="json or csv"),
    settings: Settings = Depends(get_app_settings),
    security: SecurityAnalytics = Depends(get_security),
    user: dict[str, Any] = Depends(get_current_user),
) -> Any:
    """Stats, threat analysis, posture and recent events for the window."""
    period_ms = validate_period_hours(period, settings.ANALYTICS_MAX_PERIOD_HOURS)
    export_format = validate_export_format(format)
    filters = _security_filters(severity, type)
    if export_format is ExportFormat.CSV:
        return _export_response(security, export_format, period_ms, "security-events", **filters)

    details = security.get_detailed_analytics(period_ms, **filters)
    details["blocked_ips"] = [entry.to_dict() for entry in security.blocklist.blocked_ips()]
    return details


@router.get(
    "/admin/security/export",
    tags=["Security"],
    summary="Export security events",
)
async def export_security(
    period: float = Query(24.0, description="Window length in hours"),
    severity: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    format: str = Query("json", description="json or csv"),
    settings: Settings = Depends(get_app_settings),
    security: SecurityAnalytics = Depends(get_security),
    user: dict[str, Any] = Depends(get_current_user),
) -> Response:
    period_ms = validate_period_hours(period, settings.ANALYTICS_MAX_PERIOD_HOURS)
    return _export_response(
        security, validate_export_format(format), period_ms, "security-events",
        **_security_filters(severity, type),
    )


@router.post(
    "/admin/security/resolve",
    response_model=ResolveEventResponse,
    tags=["Security"],
    summary="Resolve a security event",
)
async def resolve_security_event(
    body: ResolveEventRequest,
    security: SecurityAnalytics = Depends(get_security),
    user: dict[str, Any] = Depends(require_role(Role.ADMIN)),
) -> ResolveEventResponse:
    """Requires Admin role."""
    event = security.get_event(body.event_id)
    if event is None:
        raise NotFoundError(f"Security event '{body.event_id}' not found")
    if event.resolved:
        return ResolveEventResponse(success=True, event_id=event.id, already_resolved=True)

    security.resolve_event(event.id)
    logger.info("Security event %s resolved by '%s'", event.id, user.get("username"))
    return ResolveEventResponse(success=True, event_id=event.id)


@router.get(
    "/admin/security/blocked-ips",
    response_model=BlockedIPsResponse,
    tags=["Security"],
    summary="Auto-blocked source IPs",
)
async def blocked_ips(
    security: SecurityAnalytics = Depends(get_security),
    user: dict[str, Any] = Depends(get_current_user),
) -> BlockedIPsResponse:
    blocklist = security.blocklist
    return BlockedIPsResponse(
        blocked_ips=[entry.to_dict() for entry in blocklist.blocked_ips()],
        stats=blocklist.get_stats(),
    )


@router.post(
    "/admin/security/test-data",
    response_model=TestDataResponse,
    tags=["Security"],
    summary="Generate synthetic security events",
)
async def security_test_data(
    body: TestDataRequest,
    settings: Settings = Depends(get_app_settings),
    security: SecurityAnalytics = Depends(get_security),
    user: dict[str, Any] = Depends(require_role(Role.ADMIN)),
) -> TestDataResponse:
    """Requires Admin role."""
    count = validate_test_data_count(body.count, settings.MAX_TEST_DATA_EVENTS)
    generated = security.generate_test_data(count, seed=body.seed)
    logger.info("User '%s' generated %d security events", user.get("username"), generated)
    return TestDataResponse(generated=generated, total_events=len(security))


def _security_filters(severity: Optional[str], event_type: Optional[str]) -> dict[str, Any]:
    return {
        "severity": validate_severity(severity),
        "event_type": validate_event_type(event_type),
    }


# ── Cache warming ───────────────────────────────────────────────────────


@router.get(
    "/api/cache-warm",
    response_model=ApiMessage,
    tags=["Cache"],
    summary="Cache warming status",
)
async def cache_warm_status(settings: Settings = Depends(get_app_settings)) -> ApiMessage:
    return ApiMessage(
        message="Cache warming status",
        data={
            "enabled": settings.CACHE_WARMING_ENABLED,
            "environment": settings.ENVIRONMENT.value,
            "production": settings.is_production,
            "dev_enabled": settings.CACHE_WARMING_DEV,
            "timestamp": _now_iso(),
        },
    )


@router.post(
    "/api/cache-warm",
    response_model=ApiMessage,
    tags=["Cache"],
    summary="Prime the application cache",
)
async def cache_warm(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    warmer: CacheWarmer = Depends(get_cache_warmer),
) -> ApiMessage:
    if not settings.CACHE_WARMING_ENABLED:
        raise ValidationError("Cache warming is disabled")
    if not settings.is_production and not settings.CACHE_WARMING_DEV:
        raise ValidationError(
            "Cache warming is only enabled in production or when CACHE_WARMING_DEV=true"
        )
    if settings.is_production and settings.CACHE_WARMING_TOKEN:
        expected = f"Bearer {settings.CACHE_WARMING_TOKEN}"
        if request.headers.get("authorization") != expected:
            raise SecurityError("Invalid cache warming token")

    result = await warmer.warm()
    return ApiMessage(message="Cache warming completed successfully", data=result)


# ── Payment webhook ─────────────────────────────────────────────────────


@router.post(
    "/api/webhooks/razorpay",
    tags=["Payments"],
    summary="Razorpay webhook",
)
async def razorpay_webhook(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    security: SecurityAnalytics = Depends(get_security),
    processor: RazorpayWebhookProcessor = Depends(get_webhook_processor),
) -> JSONResponse:
    """Verify the signature over the raw body, then apply the event."""
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        raise ValidationError("Missing signature header")

    secret = settings.RAZORPAY_WEBHOOK_SECRET
    if not secret:
        logger.warning("RAZORPAY_WEBHOOK_SECRET not configured")
        raise ConfigurationError("Webhook secret not configured")

    payload = await request.body()
    if not verify_signature(payload, signature, secret):
        logger.error("Invalid Razorpay webhook signature")
        security.record_event(
            event_type=SecurityEventType.SUSPICIOUS_ACTIVITY,
            severity=EventSeverity.HIGH,
            ip=client_ip(request),
            user_agent=request.headers.get("user-agent"),
            route=request.url.path,
            description="Payment webhook with invalid signature",
        )
        raise SignatureVerificationError("Invalid signature")

    try:
        data = json.loads(payload)
    except ValueError:
        raise ValidationError("Malformed JSON payload") from None

    result = await processor.process(data)
    return JSONResponse(
        content={**result.to_dict(), "timestamp": _now_iso()},
        headers=NO_CACHE_HEADERS,
    )


@router.get("/api/webhooks/razorpay", tags=["Payments"], summary="Webhook status")
async def razorpay_webhook_status(settings: Settings = Depends(get_app_settings)) -> JSONResponse:
    return JSONResponse(
        content={
            "status": "ok",
            "service": "razorpay-webhook",
            "webhook_url": f"{settings.SITE_URL.rstrip('/')}/api/webhooks/razorpay",
            "events_supported": list(SUPPORTED_EVENTS),
            "timestamp": _now_iso(),
        },
        headers=NO_CACHE_HEADERS,
    )


@router.head("/api/webhooks/razorpay", tags=["Payments"], include_in_schema=False)
async def razorpay_webhook_head() -> Response:
    return Response(
        status_code=200,
        headers={
            "X-Webhook-Status": "active",
            "X-Service": "razorpay-webhook",
            **NO_CACHE_HEADERS,
        },
    )
