"""
Pydantic schemas for API request / response payloads.

Provides strict type validation and auto-generated OpenAPI documentation.
Analytics payloads are returned as plain dicts; their shape is owned by
the analytics strategies.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


# ── Request schemas ─────────────────────────────────────────────────────


class TokenRequest(BaseModel):
    """Login credentials."""

    username: str = Field(..., min_length=1, max_length=100, description="Username")
    password: str = Field(..., min_length=1, max_length=100, description="Password")


class ResolveEventRequest(BaseModel):
    """Mark a security event as resolved."""

    event_id: str = Field(..., min_length=1, max_length=100, description="Security event id")


class TestDataRequest(BaseModel):
    """Synthetic event generation request."""

    count: int = Field(default=100, description="Number of events to generate")
    seed: Optional[int] = Field(default=None, description="Seed for reproducible data")


# ── Response schemas ────────────────────────────────────────────────────


class TokenResponse(BaseModel):
    """JWT token response."""

    access_token: str
    token_type: str = "bearer"
    expires_in_minutes: int
    role: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    service: str
    version: str = "1.0.0"
    environment: str
    timestamp: str


class ResolveEventResponse(BaseModel):
    """Result of a resolve request."""

    success: bool
    event_id: str
    already_resolved: bool = False


class TestDataResponse(BaseModel):
    """Result of a synthetic data request."""

    success: bool = True
    generated: int
    total_events: int


class BlockedIPsResponse(BaseModel):
    """Currently blocked source IPs."""

    blocked_ips: list[dict[str, Any]]
    stats: dict[str, Any]


class WebhookResponse(BaseModel):
    """Acknowledgement sent to the payment gateway."""

    success: bool
    message: str
    event: Optional[str] = None
    timestamp: str


class ApiMessage(BaseModel):
    """Generic success envelope."""

    success: bool = True
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
