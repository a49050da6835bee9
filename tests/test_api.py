"""
Tests for the HTTP surface — health, auth, admin analytics, webhook and
cache warming routes, through the full middleware stack.
"""

from __future__ import annotations

import json
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

HOUR_MS = 3_600_000
SECRET = "whsec_api_test"
WEBHOOK = "/api/webhooks/razorpay"


def _signed(body: dict, secret: str = SECRET) -> tuple[bytes, dict]:
    from payments.webhook import compute_signature

    raw = json.dumps(body).encode()
    return raw, {"x-razorpay-signature": compute_signature(raw, secret),
                 "Content-Type": "application/json"}


# ═══════════════════════════════════════════════════════════════════════
# Public & Auth
# ═══════════════════════════════════════════════════════════════════════


class TestHealthAndAuth:
    def test_health(self, make_client):
        client, _ = make_client()
        resp = client.get("/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["environment"] == "development"

    def test_request_id_headers(self, make_client):
        client, _ = make_client()
        resp = client.get("/health", headers={"X-Request-ID": "req-abc"})

        assert resp.headers["X-Request-ID"] == "req-abc"
        assert resp.headers["X-Response-Time"].endswith("ms")

    def test_login_success(self, make_client):
        client, container = make_client()
        resp = client.post("/auth/token", json={"username": "admin", "password": "admin"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["role"] == "admin"

        events = container.security.records_in_window(HOUR_MS, event_type="admin_access")
        assert len(events) == 1

    def test_login_failure_recorded(self, make_client):
        client, container = make_client()
        resp = client.post(
            "/auth/token",
            json={"username": "admin", "password": "nope"},
            headers={"X-Forwarded-For": "198.51.100.9, 10.0.0.1"},
        )

        assert resp.status_code == 401
        assert resp.json()["code"] == "AUTHENTICATION_FAILED"

        event = container.security.records_in_window(HOUR_MS, event_type="failed_login")[0]
        assert event.ip == "198.51.100.9"

    def test_login_body_validated(self, make_client):
        client, _ = make_client()
        resp = client.post("/auth/token", json={"username": ""})

        assert resp.status_code == 422
        assert resp.json()["code"] == "VALIDATION_ERROR"


# ═══════════════════════════════════════════════════════════════════════
# Performance Routes
# ═══════════════════════════════════════════════════════════════════════


class TestPerformanceRoutes:
    def test_requires_token(self, make_client):
        client, _ = make_client()
        assert client.get("/admin/performance").status_code in (401, 403)

    def test_bad_token_rejected(self, make_client):
        client, _ = make_client()
        resp = client.get("/admin/performance", headers={"Authorization": "Bearer junk"})
        assert resp.status_code == 401

    def test_dashboard(self, make_client, viewer_headers):
        client, container = make_client()
        container.performance.record_event(
            route="/api/events", method="GET", response_time_ms=120, status_code=200
        )

        resp = client.get("/admin/performance?period=1", headers=viewer_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["stats"]["total_requests"] >= 1
        assert any(r["route"] == "/api/events" for r in data["routes"])
        assert data["health"]["status"] in ("healthy", "warning", "critical")

    def test_requests_are_recorded_by_route_template(self, make_client, viewer_headers):
        client, container = make_client()
        client.get("/api/cache-warm")
        client.get("/health")

        routes = [e.route for e in container.performance.records_in_window(HOUR_MS)]
        assert routes == ["/api/cache-warm"]

    def test_csv_export(self, make_client, viewer_headers):
        client, container = make_client()
        container.performance.record_event(
            route="/api/a", method="GET", response_time_ms=10, status_code=200
        )

        resp = client.get("/admin/performance?format=csv&period=1", headers=viewer_headers)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "performance-metrics-" in resp.headers["content-disposition"]
        assert resp.text.splitlines()[0].startswith("timestamp,route,method")

    def test_json_export_route(self, make_client, viewer_headers):
        client, container = make_client()
        container.performance.record_event(
            route="/api/a", method="POST", response_time_ms=10, status_code=201
        )

        resp = client.get("/admin/performance/export?method=post", headers=viewer_headers)
        assert resp.status_code == 200
        rows = resp.json()
        assert [r["route"] for r in rows] == ["/api/a"]

    @pytest.mark.parametrize("query", ["period=0", "period=100000", "format=xml"])
    def test_invalid_query(self, make_client, viewer_headers, query):
        client, _ = make_client()
        resp = client.get(f"/admin/performance?{query}", headers=viewer_headers)
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_health_endpoint(self, make_client, viewer_headers):
        client, _ = make_client()
        resp = client.get("/admin/performance/health", headers=viewer_headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["health"]["score"] == 100
        assert data["stats"]["system"]["memory_usage_mb"] == 128.0

    def test_test_data_requires_admin(self, make_client, viewer_headers, admin_headers):
        client, container = make_client()

        resp = client.post("/admin/performance/test-data", json={"count": 10}, headers=viewer_headers)
        assert resp.status_code == 403

        resp = client.post(
            "/admin/performance/test-data", json={"count": 25, "seed": 7}, headers=admin_headers
        )
        assert resp.status_code == 200
        assert resp.json()["generated"] == 25
        assert len(container.performance) >= 25

    def test_test_data_count_bounded(self, make_client, admin_headers):
        client, _ = make_client(MAX_TEST_DATA_EVENTS=10)
        resp = client.post("/admin/performance/test-data", json={"count": 11}, headers=admin_headers)
        assert resp.status_code == 400


# ═══════════════════════════════════════════════════════════════════════
# Security Routes
# ═══════════════════════════════════════════════════════════════════════


class TestSecurityRoutes:
    def test_dashboard_with_filters(self, make_client, viewer_headers):
        client, container = make_client()
        container.security.record_event(
            event_type="xss_attempt", severity="high", ip="203.0.113.1", description="x"
        )
        container.security.record_event(
            event_type="failed_login", severity="medium", ip="203.0.113.2", description="y"
        )

        resp = client.get("/admin/security?severity=high", headers=viewer_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["stats"]["total_events"] == 2
        assert [e["type"] for e in data["recent_events"]] == ["xss_attempt"]
        assert "compliance" in data["health"]
        assert len(data["threat_analysis"]["time_patterns"]) == 24
        assert data["blocked_ips"] == []

    def test_unknown_severity_rejected(self, make_client, viewer_headers):
        client, _ = make_client()
        resp = client.get("/admin/security?severity=apocalyptic", headers=viewer_headers)
        assert resp.status_code == 400

    def test_csv_export(self, make_client, viewer_headers):
        client, container = make_client()
        container.security.record_event(
            event_type="csrf_attack", severity="high", ip="203.0.113.3",
            description="Token mismatch, origin evil.example",
        )

        resp = client.get("/admin/security/export?format=csv", headers=viewer_headers)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert '"Token mismatch, origin evil.example"' in resp.text

    def test_resolve_flow(self, make_client, admin_headers):
        client, container = make_client()
        container.security.record_event(
            event_type="failed_login", severity="medium", ip="203.0.113.4", description="z"
        )
        event_id = container.security.records_in_window(HOUR_MS)[0].id

        resp = client.post("/admin/security/resolve", json={"event_id": event_id}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "event_id": event_id, "already_resolved": False}

        resp = client.post("/admin/security/resolve", json={"event_id": event_id}, headers=admin_headers)
        assert resp.json()["already_resolved"] is True

    def test_resolve_unknown_event(self, make_client, admin_headers):
        client, _ = make_client()
        resp = client.post("/admin/security/resolve", json={"event_id": "sec_1_missing"}, headers=admin_headers)

        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"

    def test_resolve_requires_admin(self, make_client, viewer_headers):
        client, _ = make_client()
        resp = client.post("/admin/security/resolve", json={"event_id": "x"}, headers=viewer_headers)
        assert resp.status_code == 403

    def test_blocked_ips(self, make_client, viewer_headers):
        client, container = make_client()
        for _ in range(5):
            container.security.record_event(
                event_type="sql_injection_attempt", severity="critical",
                ip="192.0.2.66", description="payload",
            )

        resp = client.get("/admin/security/blocked-ips", headers=viewer_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert [b["ip"] for b in data["blocked_ips"]] == ["192.0.2.66"]
        assert data["stats"]["currently_blocked"] == 1

    def test_test_data(self, make_client, admin_headers):
        client, container = make_client()
        resp = client.post("/admin/security/test-data", json={"count": 30, "seed": 1}, headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json()["generated"] == 30
        assert len(container.security) >= 30


# ═══════════════════════════════════════════════════════════════════════
# Payment Webhook
# ═══════════════════════════════════════════════════════════════════════


class TestWebhookRoute:
    def test_missing_signature(self, make_client):
        client, _ = make_client(RAZORPAY_WEBHOOK_SECRET=SECRET)
        resp = client.post(WEBHOOK, content=b"{}")

        assert resp.status_code == 400
        assert resp.json()["error"] == "Missing signature header"

    def test_secret_not_configured(self, make_client):
        client, _ = make_client()
        raw, headers = _signed({"event": "payment.captured"})
        resp = client.post(WEBHOOK, content=raw, headers=headers)

        assert resp.status_code == 500
        assert resp.json()["code"] == "CONFIGURATION_ERROR"

    def test_invalid_signature(self, make_client):
        client, container = make_client(RAZORPAY_WEBHOOK_SECRET=SECRET)
        raw, headers = _signed({"event": "payment.captured"}, secret="wrong")
        resp = client.post(WEBHOOK, content=raw, headers=headers)

        assert resp.status_code == 401
        assert resp.json()["code"] == "INVALID_SIGNATURE"

        events = container.security.records_in_window(HOUR_MS, event_type="suspicious_activity")
        assert len(events) == 1
        assert events[0].severity.value == "high"

    def test_malformed_json(self, make_client):
        from payments.webhook import compute_signature

        client, _ = make_client(RAZORPAY_WEBHOOK_SECRET=SECRET)
        raw = b"{not json"
        resp = client.post(
            WEBHOOK, content=raw,
            headers={"x-razorpay-signature": compute_signature(raw, SECRET)},
        )
        assert resp.status_code == 400

    def test_captured_payment(self, make_client, db_backend):
        client, _ = make_client(
            db_transport=db_backend.transport(),
            RAZORPAY_WEBHOOK_SECRET=SECRET,
            SUPABASE_URL="https://db.example.test",
            SUPABASE_SERVICE_KEY="service-key",
        )
        raw, headers = _signed({
            "event": "payment.captured",
            "payload": {"payment": {"entity": {
                "id": "pay_9", "order_id": "order_9", "amount": 10000,
            }}},
        })
        resp = client.post(WEBHOOK, content=raw, headers=headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["event"] == "payment.captured"
        assert data["message"] == "Payment pay_9 captured and processed"
        assert "timestamp" in data
        assert resp.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
        assert len(db_backend.sent("POST", "/rest/v1/payments")) == 1

    def test_unknown_event(self, make_client):
        client, _ = make_client(RAZORPAY_WEBHOOK_SECRET=SECRET)
        raw, headers = _signed({"event": "refund.processed", "payload": {}})
        resp = client.post(WEBHOOK, content=raw, headers=headers)

        assert resp.status_code == 200
        assert resp.json()["message"] == "Event refund.processed received but not processed"

    def test_status_endpoints(self, make_client):
        client, _ = make_client(SITE_URL="https://codeunia.example/")

        data = client.get(WEBHOOK).json()
        assert data["status"] == "ok"
        assert data["webhook_url"] == "https://codeunia.example/api/webhooks/razorpay"
        assert "payment.captured" in data["events_supported"]

        head = client.head(WEBHOOK)
        assert head.status_code == 200
        assert head.headers["X-Webhook-Status"] == "active"
        assert head.headers["X-Service"] == "razorpay-webhook"


# ═══════════════════════════════════════════════════════════════════════
# Cache Warming
# ═══════════════════════════════════════════════════════════════════════


class TestCacheWarmRoute:
    def test_status(self, make_client):
        client, _ = make_client(CACHE_WARMING_DEV=True)
        data = client.get("/api/cache-warm").json()

        assert data["success"] is True
        assert data["data"]["enabled"] is True
        assert data["data"]["dev_enabled"] is True
        assert data["data"]["production"] is False

    def test_disabled(self, make_client):
        client, _ = make_client(CACHE_WARMING_ENABLED=False)
        assert client.post("/api/cache-warm").status_code == 400

    def test_development_requires_opt_in(self, make_client):
        client, _ = make_client()
        assert client.post("/api/cache-warm").status_code == 400

    def test_development_opt_in_runs(self, make_client, db_backend):
        client, container = make_client(
            db_transport=db_backend.transport(),
            CACHE_WARMING_DEV=True,
            SUPABASE_URL="https://db.example.test",
            SUPABASE_SERVICE_KEY="service-key",
        )
        resp = client.post("/api/cache-warm")

        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "Cache warming completed successfully"
        assert data["data"]["warmed_endpoints"] == 21
        assert data["data"]["errors"] == 0
        assert container.cache.memory.get_stats()["size"] == 21

    def test_production_token_checked(self, make_client):
        client, _ = make_client(ENVIRONMENT="production", CACHE_WARMING_TOKEN="s3cret")

        resp = client.post("/api/cache-warm", headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 401
        # production responses carry only the generic message
        assert resp.json()["error"] == "Authentication required"

        resp = client.post("/api/cache-warm", headers={"Authorization": "Bearer s3cret"})
        assert resp.status_code == 200
        # database unconfigured: every target fails but the run completes
        assert resp.json()["data"]["errors"] == 21


# ═══════════════════════════════════════════════════════════════════════
# Error Handling
# ═══════════════════════════════════════════════════════════════════════


class TestErrorHandling:
    def test_unhandled_error_sanitized_in_production(self, make_client):
        client, container = make_client(raise_server_exceptions=False, ENVIRONMENT="production")

        def explode(*args, **kwargs):
            raise RuntimeError("secret internal detail")

        container.performance.get_detailed_analytics = explode
        from security.auth import Role, create_token

        resp = client.get(
            "/admin/performance",
            headers={"Authorization": f"Bearer {create_token('admin', Role.ADMIN)}"},
        )
        assert resp.status_code == 500
        body = resp.json()
        assert body["error"] == "Internal server error"
        assert "secret" not in json.dumps(body)

    def test_unhandled_error_counted_as_request_error(self, make_client):
        client, container = make_client(raise_server_exceptions=False)

        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        container.performance.get_detailed_analytics = explode
        from security.auth import Role, create_token

        resp = client.get(
            "/admin/performance",
            headers={"Authorization": f"Bearer {create_token('admin', Role.ADMIN)}"},
        )
        assert resp.status_code == 500

        stats = container.performance.get_stats(HOUR_MS)
        assert stats["total_requests"] == 1
        assert stats["error_count"] == 1
        assert container.performance.records_in_window(HOUR_MS)[0].status_code == 500

    def test_sanitize_error_mapping(self):
        from core.error_handler import sanitize_error
        from core.exceptions import (
            ConfigurationError,
            DatabaseError,
            EmailDeliveryError,
            NotFoundError,
            SignatureVerificationError,
            ValidationError,
        )

        cases = [
            (ValidationError("bad"), 400),
            (SignatureVerificationError("sig"), 401),
            (NotFoundError("gone"), 404),
            (ConfigurationError("cfg"), 500),
            (DatabaseError("db"), 500),
            (EmailDeliveryError("mail"), 503),
            (KeyError("k"), 500),
        ]
        for exc, expected in cases:
            status_code, body = sanitize_error(exc, production=False)
            assert status_code == expected
            assert body["timestamp"]

    def test_development_includes_details(self):
        from core.error_handler import sanitize_error
        from core.exceptions import DatabaseError

        _, body = sanitize_error(DatabaseError("select failed", {"status_code": 503}), production=False)
        assert body["error"] == "[database] select failed"
        assert body["details"] == {"status_code": 503}

        _, body = sanitize_error(DatabaseError("select failed", {"status_code": 503}), production=True)
        assert body["error"] == "Database operation failed"
        assert "details" not in body
