"""
EmailClient — transactional email through the Resend HTTP API.

``send()`` never raises: missing configuration, HTTP errors and
transport errors are logged and reported through ``EmailResult``.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailResult:
    """Outcome of a single send attempt."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message_id": self.message_id, "error": self.error}


class EmailClient:
    """Resend API client.

    Usage::

        client = EmailClient.from_settings()
        result = await client.send("user@example.com", "Payment received", "<p>...</p>")
        if not result.success:
            ...
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        api_url: str = "https://api.resend.com/emails",
        default_from: str = "Codeunia <connect@codeunia.com>",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._default_from = default_from
        self._timeout = timeout
        self._transport = transport
        self._sent = 0
        self._failed = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "EmailClient":
        settings = settings or get_settings()
        return cls(
            settings.RESEND_API_KEY,
            api_url=settings.RESEND_API_URL,
            default_from=settings.EMAIL_FROM,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def send(
        self,
        to: str | list[str],
        subject: str,
        html_body: str,
        *,
        from_: str | None = None,
    ) -> EmailResult:
        if not self._api_key:
            logger.warning("RESEND_API_KEY not configured, skipping email '%s'", subject)
            return self._failure("Email provider not configured")

        payload = {
            "from": from_ or self._default_from,
            "to": [to] if isinstance(to, str) else list(to),
            "subject": subject,
            "html": html_body,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Email send failed for '%s': HTTP %d %s",
                subject,
                exc.response.status_code,
                exc.response.text[:200],
            )
            return self._failure(f"HTTP {exc.response.status_code}")
        except httpx.HTTPError as exc:
            logger.error("Email send failed for '%s': %s", subject, exc)
            return self._failure(str(exc) or exc.__class__.__name__)

        message_id = response.json().get("id")
        self._sent += 1
        logger.info("Email '%s' sent (id: %s)", subject, message_id)
        return EmailResult(success=True, message_id=message_id)

    def get_stats(self) -> dict[str, Any]:
        return {"configured": self.configured, "sent": self._sent, "failed": self._failed}

    def _failure(self, error: str) -> EmailResult:
        self._failed += 1
        return EmailResult(success=False, error=error)


def render_payment_confirmation(
    *,
    payment_id: str,
    amount_rupees: float | None,
    order_id: str | None = None,
    description: str | None = None,
    currency: str = "INR",
) -> tuple[str, str]:
    """Return ``(subject, html)`` for a captured-payment receipt."""
    amount = f"{currency} {amount_rupees:,.2f}" if amount_rupees is not None else "-"
    rows = [
        ("Payment ID", payment_id),
        ("Order ID", order_id or "-"),
        ("Amount", amount),
    ]
    if description:
        rows.append(("Description", description))

    table = "".join(
        f"<tr><td><strong>{html.escape(label)}</strong></td><td>{html.escape(str(value))}</td></tr>"
        for label, value in rows
    )
    body = (
        "<div style=\"font-family: Arial, sans-serif; max-width: 600px;\">"
        "<h2>Payment received</h2>"
        "<p>Thank you! Your payment has been processed successfully.</p>"
        f"<table cellpadding=\"6\">{table}</table>"
        "<p>If you have any questions, reply to this email.</p>"
        "</div>"
    )
    return f"Payment confirmation - {payment_id}", body
