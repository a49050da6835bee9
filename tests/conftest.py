"""
Shared test fixtures and configuration for pytest.
"""

from __future__ import annotations

import os
import sys
import pytest

# Ensure project root is importable
_project_root = os.path.join(os.path.dirname(__file__), "..")
sys.path.insert(0, _project_root)

# Deterministic environment for all tests
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "WARNING"
for _name in (
    "RAZORPAY_WEBHOOK_SECRET",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
    "RESEND_API_KEY",
    "REDIS_URL",
    "CACHE_WARMING_TOKEN",
):
    os.environ.pop(_name, None)

# 2024-03-15T12:00:00Z
BASE_TIME_MS = 1_710_504_000_000.0
HOUR_MS = 3_600_000


class FakeClock:
    """Manually advanced epoch-milliseconds clock."""

    def __init__(self, start_ms: float = BASE_TIME_MS) -> None:
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, ms: float) -> None:
        self.now_ms += ms


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Clear settings cache so test env vars take effect."""
    from config.settings import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def probe():
    """System probe with a fixed, healthy snapshot."""
    from analytics.system import StaticSystemProbe, SystemSnapshot
    return StaticSystemProbe(SystemSnapshot(memory_usage_mb=128.0, cpu_usage_percent=5.0))


@pytest.fixture
def performance(clock, probe):
    """Provide an isolated PerformanceAnalytics instance."""
    from analytics.performance import PerformanceAnalytics
    return PerformanceAnalytics(clock=clock, probe=probe)


@pytest.fixture
def security(clock, probe):
    """Provide an isolated SecurityAnalytics instance."""
    from analytics.security import SecurityAnalytics
    return SecurityAnalytics(clock=clock, probe=probe)


@pytest.fixture
def make_settings():
    """Factory for Settings with overrides."""
    from config.settings import Settings

    def _make(**overrides):
        values = {"RATE_LIMIT_RPM": 10_000}
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def make_client(clock, probe, make_settings):
    """Factory for a TestClient over a freshly wired application.

    Returns ``(client, container)``.
    """
    from fastapi.testclient import TestClient

    from api.dependencies import AppContainer
    from main import create_app

    clients = []

    def _make(db_transport=None, email_transport=None, raise_server_exceptions=True, **overrides):
        settings = make_settings(**overrides)
        container = AppContainer.build(
            settings,
            clock=clock,
            probe=probe,
            db_transport=db_transport,
            email_transport=email_transport,
        )
        app = create_app(settings, container)
        client = TestClient(app, raise_server_exceptions=raise_server_exceptions)
        clients.append(client)
        return client, container

    yield _make

    for client in clients:
        client.close()


@pytest.fixture
def admin_headers():
    from security.auth import Role, create_token
    return {"Authorization": f"Bearer {create_token('admin', Role.ADMIN)}"}


@pytest.fixture
def viewer_headers():
    from security.auth import Role, create_token
    return {"Authorization": f"Bearer {create_token('viewer', Role.VIEWER)}"}


class RecordingBackend:
    """httpx handler that records requests and replies with canned responses.

    ``routes`` maps ``(method, path)`` to ``(status, json_body, headers)``;
    anything unmatched gets ``default``.
    """

    def __init__(self, default=(200, [], None)) -> None:
        self.requests = []
        self.routes = {}
        self.default = default

    def reply(self, method, path, status=200, body=None, headers=None) -> None:
        self.routes[(method, path)] = (status, [] if body is None else body, headers)

    def __call__(self, request):
        import httpx

        self.requests.append(request)
        status, body, headers = self.routes.get(
            (request.method, request.url.path), self.default
        )
        if request.method == "HEAD":
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, json=body, headers=headers)

    def transport(self):
        import httpx
        return httpx.MockTransport(self)

    def sent(self, method=None, path=None):
        return [
            r for r in self.requests
            if (method is None or r.method == method) and (path is None or r.url.path == path)
        ]


@pytest.fixture
def db_backend():
    return RecordingBackend()


@pytest.fixture
def email_backend():
    return RecordingBackend(default=(200, {"id": "email_123"}, None))


@pytest.fixture
def db(db_backend):
    from services.database import SupabaseClient
    return SupabaseClient("https://db.example.test", "service-key", transport=db_backend.transport())


@pytest.fixture
def email(email_backend):
    from services.email import EmailClient
    return EmailClient("re_test_key", transport=email_backend.transport())
