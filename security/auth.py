"""
Auth — JWT bearer tokens with Role-Based Access Control for admin routes.

Roles:
  • Admin  — can read dashboards, resolve events, generate test data
  • Viewer — can read analytics dashboards and exports only

Accounts and signing keys come from ``Settings``; request-scoped
dependencies read the settings the application was built with. Login
outcomes are recorded as security events.
"""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config.settings import Settings, get_settings
from core.exceptions import SecurityError
from events.event_models import EventSeverity, SecurityEventType

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer()


class Role(str, Enum):
    """User roles for RBAC."""
    ADMIN = "admin"
    VIEWER = "viewer"


# Roles that satisfy a requirement for the key role.
_ROLE_GRANTS: dict[Role, frozenset[Role]] = {
    Role.ADMIN: frozenset({Role.ADMIN}),
    Role.VIEWER: frozenset({Role.ADMIN, Role.VIEWER}),
}


# ── Accounts ────────────────────────────────────────────────────────────

def _accounts(settings: Settings) -> dict[str, tuple[str, Role]]:
    return {
        settings.ADMIN_USERNAME: (settings.ADMIN_PASSWORD, Role.ADMIN),
        settings.VIEWER_USERNAME: (settings.VIEWER_PASSWORD, Role.VIEWER),
    }


def authenticate_user(
    username: str, password: str, settings: Optional[Settings] = None
) -> dict[str, Any]:
    """Check credentials against the configured accounts.

    Raises:
        SecurityError: If the user is unknown or the password is wrong.
    """
    account = _accounts(settings or get_settings()).get(username)
    if account is None or not hmac.compare_digest(
        account[0].encode("utf-8"), password.encode("utf-8")
    ):
        logger.warning("Failed login attempt for user '%s'", username)
        raise SecurityError("Invalid credentials")

    role = account[1]
    logger.info("User '%s' authenticated (role: %s)", username, role.value)
    return {"username": username, "role": role}


# ── Tokens ──────────────────────────────────────────────────────────────

def create_token(username: str, role: Role | str, settings: Optional[Settings] = None) -> str:
    """Sign a bearer token carrying the username and role."""
    settings = settings or get_settings()
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": username,
        "role": Role(role).value,
        "iat": issued,
        "exp": issued + timedelta(minutes=settings.JWT_EXPIRY_MINUTES),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str, settings: Optional[Settings] = None) -> dict[str, Any]:
    """Decode a bearer token into ``{"username", "role"}``.

    Raises:
        SecurityError: If the token is malformed, expired, forged or
            missing a claim.
    """
    settings = settings or get_settings()
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return {"username": claims["sub"], "role": Role(claims["role"])}
    except (JWTError, KeyError, ValueError) as exc:
        raise SecurityError(f"Invalid token: {exc}") from exc


# ── Security event recording ────────────────────────────────────────────

def record_login_outcome(
    security: Any,
    *,
    username: str,
    ip: str,
    success: bool,
    role: Optional[Role] = None,
    user_agent: Optional[str] = None,
    route: str = "/auth/token",
) -> None:
    """Record a login attempt on a ``SecurityAnalytics`` ledger.

    failed → failed_login (medium), admin → admin_access (low),
    anyone else → auth_attempt (low).
    """
    common = {"ip": ip, "user_agent": user_agent, "route": route}
    if not success:
        security.record_event(
            event_type=SecurityEventType.FAILED_LOGIN,
            severity=EventSeverity.MEDIUM,
            description=f"Failed login attempt for user '{username}'",
            metadata={"username": username},
            **common,
        )
        return

    admin = role == Role.ADMIN
    security.record_event(
        event_type=SecurityEventType.ADMIN_ACCESS if admin else SecurityEventType.AUTH_ATTEMPT,
        severity=EventSeverity.LOW,
        description="Administrative access granted" if admin else "User authentication attempt",
        user_id=username,
        **common,
    )


# ── FastAPI dependencies ────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> dict[str, Any]:
    """FastAPI dependency — the verified user behind the bearer token."""
    settings = getattr(request.app.state, "settings", None)
    try:
        return verify_token(credentials.credentials, settings)
    except SecurityError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None


def require_role(required_role: Role) -> Callable:
    """FastAPI dependency factory — reject users whose role does not grant
    ``required_role`` (admin grants everything).

    Usage::

        @router.post("/admin/security/resolve")
        async def resolve(user = Depends(require_role(Role.ADMIN))):
            ...
    """
    allowed = _ROLE_GRANTS[required_role]

    async def role_checker(
        user: dict[str, Any] = Depends(get_current_user),
    ) -> dict[str, Any]:
        if user["role"] not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires '{required_role.value}' role. You have '{user['role'].value}'.",
            )
        return user

    return role_checker
