"""
SupabaseClient — thin async wrapper around the Supabase PostgREST API.

All calls go through ``httpx.AsyncClient`` with the service-role key.
Transport and HTTP failures are raised as ``DatabaseError``; callers
that must not fail (webhooks, cache warming) catch and log them.

PaymentRepository holds the payment-related writes used by the
payment webhook. Every method returns a bool and never raises.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, Optional

import httpx

from config.settings import Settings, get_settings
from core.exceptions import ConfigurationError, DatabaseError, PlatformError

logger = logging.getLogger(__name__)

_FILTER_OPERATORS = {"eq", "neq", "gt", "gte", "lt", "lte", "like", "ilike", "is", "in"}

PREMIUM_MEMBERSHIP_DURATION = timedelta(days=365)

# A filter value is either a plain value (equality) or an ``(operator, value)`` pair.
Filters = Mapping[str, Any]


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (list, tuple, set)):
        return "(" + ",".join(_format_value(v) for v in value) + ")"
    return str(value)


def build_filter_params(filters: Optional[Filters]) -> list[tuple[str, str]]:
    """Translate ``{"status": "live", "date": ("gte", "2024-01-01")}`` into
    PostgREST query parameters."""
    params: list[tuple[str, str]] = []
    for column, condition in (filters or {}).items():
        if isinstance(condition, tuple) and len(condition) == 2 and condition[0] in _FILTER_OPERATORS:
            operator, value = condition
        else:
            operator, value = "eq", condition
        params.append((column, f"{operator}.{_format_value(value)}"))
    return params


def _parse_content_range(header: str | None) -> int:
    """Total from a ``Content-Range: 0-9/42`` header (``*/0`` for empty)."""
    if not header or "/" not in header:
        return 0
    total = header.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else 0


class SupabaseClient:
    """Async PostgREST client.

    Usage::

        db = SupabaseClient.from_settings()
        rows = await db.select("events", filters={"featured": True}, limit=5)
        await db.upsert("payments", {...}, on_conflict="razorpay_payment_id")
        await db.aclose()
    """

    def __init__(
        self,
        url: str | None,
        service_key: str | None,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/") if url else None
        self._service_key = service_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._requests = 0
        self._failures = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "SupabaseClient":
        settings = settings or get_settings()
        return cls(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_KEY,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self._url and self._service_key)

    # ── Queries ─────────────────────────────────────────────────────────

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Optional[Filters] = None,
        order: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        params = [("select", columns), *build_filter_params(filters)]
        if order:
            params.append(("order", f"{order}.{'asc' if ascending else 'desc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset:
            params.append(("offset", str(offset)))
        response = await self._request("GET", table, params=params)
        return response.json()

    async def count(self, table: str, *, filters: Optional[Filters] = None) -> int:
        """Exact row count, read from the ``Content-Range`` header."""
        params = [("select", "*"), *build_filter_params(filters)]
        response = await self._request(
            "HEAD", table, params=params, prefer="count=exact"
        )
        return _parse_content_range(response.headers.get("content-range"))

    # ── Writes ──────────────────────────────────────────────────────────

    async def insert(
        self, table: str, rows: Mapping[str, Any] | Iterable[Mapping[str, Any]]
    ) -> list[dict[str, Any]]:
        response = await self._request(
            "POST", table, json=_as_rows(rows), prefer="return=representation"
        )
        return response.json()

    async def upsert(
        self,
        table: str,
        rows: Mapping[str, Any] | Iterable[Mapping[str, Any]],
        *,
        on_conflict: str | None = None,
    ) -> list[dict[str, Any]]:
        """Insert or merge on the ``on_conflict`` column(s)."""
        params = [("on_conflict", on_conflict)] if on_conflict else []
        response = await self._request(
            "POST",
            table,
            params=params,
            json=_as_rows(rows),
            prefer="resolution=merge-duplicates,return=representation",
        )
        return response.json()

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Filters
    ) -> list[dict[str, Any]]:
        if not filters:
            raise DatabaseError(f"Refusing unfiltered update on '{table}'")
        response = await self._request(
            "PATCH",
            table,
            params=build_filter_params(filters),
            json=dict(values),
            prefer="return=representation",
        )
        return response.json()

    async def delete(self, table: str, *, filters: Filters) -> list[dict[str, Any]]:
        if not filters:
            raise DatabaseError(f"Refusing unfiltered delete on '{table}'")
        response = await self._request(
            "DELETE",
            table,
            params=build_filter_params(filters),
            prefer="return=representation",
        )
        return response.json()

    # ── Lifecycle & Stats ───────────────────────────────────────────────

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def get_stats(self) -> dict[str, Any]:
        return {
            "configured": self.configured,
            "requests": self._requests,
            "failures": self._failures,
        }

    # ── Private helpers ─────────────────────────────────────────────────

    def _http(self) -> httpx.AsyncClient:
        if not self.configured:
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set to use the database"
            )
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self._url}/rest/v1/",
                headers={
                    "apikey": self._service_key or "",
                    "Authorization": f"Bearer {self._service_key}",
                },
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        client = self._http()
        headers = {"Prefer": prefer} if prefer else None
        self._requests += 1
        try:
            response = await client.request(
                method, table, params=params, json=json, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._failures += 1
            raise DatabaseError(
                f"{method} {table} failed with HTTP {exc.response.status_code}",
                {"status_code": exc.response.status_code, "body": exc.response.text[:500]},
            ) from exc
        except httpx.HTTPError as exc:
            self._failures += 1
            raise DatabaseError(f"{method} {table} failed: {exc}") from exc
        return response


def _as_rows(rows: Mapping[str, Any] | Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    if isinstance(rows, Mapping):
        return [dict(rows)]
    return [dict(r) for r in rows]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PaymentRepository:
    """Payment and fulfilment writes triggered by gateway webhooks.

    Every write is idempotent: payments upsert on the gateway payment id
    and fulfilment updates set absolute values.
    """

    def __init__(self, db: SupabaseClient) -> None:
        self._db = db

    async def update_payment_status(
        self,
        payment_id: str,
        order_id: str | None,
        status: str,
        amount_paise: int | None = None,
        notes: dict[str, Any] | None = None,
    ) -> bool:
        """Upsert the payment row; on success, fulfil the purchase named in ``notes``."""
        row: dict[str, Any] = {
            "razorpay_payment_id": payment_id,
            "razorpay_order_id": order_id,
            "status": status,
            "webhook_processed_at": _now_iso(),
            "notes": notes or {},
        }
        if amount_paise is not None:
            row["amount"] = amount_paise / 100

        if not await self._write(
            "Failed to update payment %s" % payment_id,
            self._db.upsert("payments", row, on_conflict="razorpay_payment_id"),
        ):
            return False

        if status == "success" and notes:
            await self._fulfil(notes, order_id)
        return True

    async def activate_premium_membership(self, user_id: str, order_id: str | None) -> bool:
        now = datetime.now(timezone.utc)
        ok = await self._write(
            "Failed to update premium status for %s" % user_id,
            self._db.upsert(
                "user_premium_status",
                {
                    "user_id": user_id,
                    "is_premium": True,
                    "premium_expires_at": (now + PREMIUM_MEMBERSHIP_DURATION).isoformat(),
                    "payment_order_id": order_id,
                    "activated_at": now.isoformat(),
                },
                on_conflict="user_id",
            ),
        )
        if ok:
            logger.info("Premium membership activated for user: %s", user_id)
        return ok

    async def confirm_internship_application(
        self, user_id: str, internship_id: str, order_id: str | None
    ) -> bool:
        ok = await self._write(
            "Failed to update internship application %s -> %s" % (user_id, internship_id),
            self._db.update(
                "internship_applications",
                {
                    "payment_status": "completed",
                    "payment_order_id": order_id,
                    "application_status": "payment_verified",
                    "updated_at": _now_iso(),
                },
                filters={"user_id": user_id, "internship_id": internship_id},
            ),
        )
        if ok:
            logger.info("Internship application payment verified: %s -> %s", user_id, internship_id)
        return ok

    async def confirm_hackathon_registration(
        self, user_id: str, hackathon_id: str, order_id: str | None
    ) -> bool:
        ok = await self._write(
            "Failed to update hackathon registration %s -> %s" % (user_id, hackathon_id),
            self._db.update(
                "hackathon_registrations",
                {
                    "payment_status": "completed",
                    "payment_order_id": order_id,
                    "registration_status": "confirmed",
                    "updated_at": _now_iso(),
                },
                filters={"user_id": user_id, "hackathon_id": hackathon_id},
            ),
        )
        if ok:
            logger.info("Hackathon registration confirmed: %s -> %s", user_id, hackathon_id)
        return ok

    async def confirm_event_registration(self, user_id: str, event_id: str) -> bool:
        ok = await self._write(
            "Failed to update event registration %s -> %s" % (user_id, event_id),
            self._db.update(
                "master_registrations",
                {
                    "payment_status": "paid",
                    "status": "registered",
                    "updated_at": _now_iso(),
                },
                filters={
                    "user_id": user_id,
                    "activity_type": "event",
                    "activity_id": event_id,
                },
            ),
        )
        if ok:
            logger.info("Event registration confirmed: %s -> %s", user_id, event_id)
        return ok

    # ── Private helpers ─────────────────────────────────────────────────

    async def _fulfil(self, notes: dict[str, Any], order_id: str | None) -> None:
        kind = notes.get("type")
        user_id = str(notes.get("user_id") or notes.get("userId") or "")
        if not user_id:
            return
        if kind == "premium_membership":
            await self.activate_premium_membership(user_id, order_id)
        elif kind == "internship_application":
            internship_id = notes.get("internship_id") or notes.get("internshipId")
            if internship_id:
                await self.confirm_internship_application(user_id, str(internship_id), order_id)
        elif kind == "hackathon_registration":
            hackathon_id = notes.get("hackathon_id")
            if hackathon_id:
                await self.confirm_hackathon_registration(user_id, str(hackathon_id), order_id)

    @staticmethod
    async def _write(failure_message: str, operation: Any) -> bool:
        try:
            await operation
        except PlatformError as exc:
            logger.error("%s: %s", failure_message, exc.message)
            return False
        return True
