"""
Razorpay webhook — signature verification and event processing.

Handled events:
  • payment.authorized — payment stored as ``pending``
  • payment.captured   — payment stored as ``success``, purchase fulfilled,
                         confirmation email sent when the payer has an email
  • payment.failed     — payment stored as ``failed``
  • order.paid         — event / hackathon / internship fulfilment by notes

Unknown events are acknowledged without side effects.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from core.exceptions import ValidationError
from services.database import PaymentRepository
from services.email import EmailClient, render_payment_confirmation

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-razorpay-signature"

SUPPORTED_EVENTS = (
    "payment.authorized",
    "payment.captured",
    "payment.failed",
    "order.paid",
)

_PAYMENT_STATUSES = {
    "payment.authorized": "pending",
    "payment.captured": "success",
    "payment.failed": "failed",
}


def compute_signature(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Constant-time check of ``signature`` against the body's HMAC."""
    expected = compute_signature(payload, secret)
    if len(signature) != len(expected):
        return False
    return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))


@dataclass
class WebhookResult:
    """Acknowledgement returned to the gateway."""

    success: bool
    message: str
    event: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message, "event": self.event}


class RazorpayWebhookProcessor:
    """Apply verified Razorpay webhook events to the data store.

    Usage::

        processor = RazorpayWebhookProcessor(PaymentRepository(db), email_client)
        result = await processor.process(json.loads(body))
    """

    def __init__(
        self,
        payments: PaymentRepository,
        email: EmailClient | None = None,
    ) -> None:
        self._payments = payments
        self._email = email
        self._processed: dict[str, int] = {}

    async def process(self, data: Any) -> WebhookResult:
        """Dispatch one decoded webhook body.

        Raises:
            ValidationError: If the body is not an object with an ``event``.
        """
        if not isinstance(data, dict) or not isinstance(data.get("event"), str):
            raise ValidationError("Webhook payload must be an object with an 'event' field")

        event = data["event"]
        payload = data.get("payload") or {}
        logger.info("Razorpay webhook received: %s", event)
        self._processed[event] = self._processed.get(event, 0) + 1

        if event in _PAYMENT_STATUSES:
            return await self._handle_payment(event, _entity(payload, "payment"))
        if event == "order.paid":
            return await self._handle_order_paid(event, _entity(payload, "order"))

        logger.info("Unhandled Razorpay event: %s", event)
        return WebhookResult(True, f"Event {event} received but not processed", event)

    def get_stats(self) -> dict[str, Any]:
        return {"processed": dict(self._processed)}

    # ── Handlers ────────────────────────────────────────────────────────

    async def _handle_payment(
        self, event: str, payment: dict[str, Any] | None
    ) -> WebhookResult:
        if not payment or not payment.get("id"):
            return WebhookResult(True, f"Processed {event} event", event)

        status = _PAYMENT_STATUSES[event]
        payment_id = str(payment["id"])
        amount = payment.get("amount")
        logger.info(
            "Payment %s: %s (₹%s)",
            status, payment_id, amount / 100 if amount is not None else "?",
        )

        stored = await self._payments.update_payment_status(
            payment_id,
            payment.get("order_id"),
            status,
            amount,
            payment.get("notes") or None,
        )

        if event == "payment.authorized":
            return WebhookResult(True, f"Payment {payment_id} authorized", event)
        if event == "payment.failed":
            return WebhookResult(True, f"Payment {payment_id} marked as failed", event)

        details: dict[str, Any] = {"stored": stored}
        if payment.get("email"):
            details["email_sent"] = await self._send_confirmation(payment)
        outcome = "processed" if stored else "processing failed"
        return WebhookResult(True, f"Payment {payment_id} captured and {outcome}", event, details)

    async def _handle_order_paid(
        self, event: str, order: dict[str, Any] | None
    ) -> WebhookResult:
        if not order or not order.get("id"):
            return WebhookResult(True, f"Processed {event} event", event)

        order_id = str(order["id"])
        notes = order.get("notes") or {}
        kind = notes.get("type")
        user_id = notes.get("user_id") or notes.get("userId")
        if not user_id:
            if kind:
                logger.warning("Order %s (%s) has no user_id, skipping fulfilment", order_id, kind)
            return WebhookResult(True, f"Order {order_id} completed", event)

        if kind == "event_registration" and notes.get("event_id"):
            ok = await self._payments.confirm_event_registration(
                str(user_id), str(notes["event_id"])
            )
            return WebhookResult(
                True, f"Event registration completed for order {order_id}", event, {"stored": ok}
            )
        if kind == "hackathon_registration" and notes.get("hackathon_id"):
            ok = await self._payments.confirm_hackathon_registration(
                str(user_id), str(notes["hackathon_id"]), order_id
            )
            return WebhookResult(
                True, f"Hackathon registration completed for order {order_id}", event, {"stored": ok}
            )
        internship_id = notes.get("internship_id") or notes.get("internshipId")
        if kind == "internship_application" and internship_id:
            ok = await self._payments.confirm_internship_application(
                str(user_id), str(internship_id), order_id
            )
            return WebhookResult(
                True, f"Internship application completed for order {order_id}", event, {"stored": ok}
            )

        return WebhookResult(True, f"Order {order_id} completed", event)

    async def _send_confirmation(self, payment: dict[str, Any]) -> bool:
        if self._email is None:
            return False
        amount = payment.get("amount")
        subject, body = render_payment_confirmation(
            payment_id=str(payment["id"]),
            amount_rupees=amount / 100 if amount is not None else None,
            order_id=payment.get("order_id"),
            description=payment.get("description"),
            currency=payment.get("currency") or "INR",
        )
        result = await self._email.send(payment["email"], subject, body)
        if not result.success:
            logger.warning(
                "Confirmation email for payment %s failed: %s", payment["id"], result.error
            )
        return result.success


def _entity(payload: dict[str, Any], name: str) -> dict[str, Any] | None:
    wrapper = payload.get(name) if isinstance(payload, dict) else None
    if isinstance(wrapper, dict):
        entity = wrapper.get("entity")
        if isinstance(entity, dict):
            return entity
    return None
