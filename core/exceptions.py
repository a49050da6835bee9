"""
Custom exception hierarchy for the platform telemetry service.

Provides specific, meaningful exceptions for every failure mode
so callers can handle errors precisely. Each class carries a stable
machine-readable ``code`` that survives message sanitization.
"""

from __future__ import annotations


class PlatformError(Exception):
    """Root exception for the service."""

    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        *,
        code: str | None = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code
        super().__init__(self.message)


class ConfigurationError(PlatformError):
    """Raised when a required secret or setting is missing."""

    code = "CONFIGURATION_ERROR"


class SecurityError(PlatformError):
    """Raised on authentication / authorization failures."""

    code = "AUTHENTICATION_FAILED"


class SignatureVerificationError(SecurityError):
    """Raised when a webhook signature does not match the payload."""

    code = "INVALID_SIGNATURE"


class ValidationError(PlatformError):
    """Raised when input validation fails."""

    code = "VALIDATION_ERROR"


class NotFoundError(PlatformError):
    """Raised when a requested resource does not exist."""

    code = "NOT_FOUND"


class RateLimitExceededError(PlatformError):
    """Raised when rate limit is exceeded."""

    code = "RATE_LIMITED"

    def __init__(self) -> None:
        super().__init__("Rate limit exceeded. Please try again later.")


class UpstreamServiceError(PlatformError):
    """Raised when a managed dependency (database, email, cache) fails."""

    code = "UPSTREAM_ERROR"

    def __init__(self, service: str, message: str, details: dict | None = None) -> None:
        self.service = service
        super().__init__(f"[{service}] {message}", details)


class DatabaseError(UpstreamServiceError):
    """Raised when the hosted data store rejects or fails a request."""

    code = "DATABASE_ERROR"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__("database", message, details)


class EmailDeliveryError(UpstreamServiceError):
    """Raised when the transactional email provider fails."""

    code = "EMAIL_ERROR"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__("email", message, details)
