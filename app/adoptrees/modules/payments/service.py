"""
Razorpay payment flow: gateway order creation, checkout signature verification
and webhook processing.

Signatures follow Razorpay's scheme:
- checkout: HMAC-SHA256(key_secret, "<razorpay_order_id>|<razorpay_payment_id>")
- webhook:  HMAC-SHA256(webhook_secret, raw request body)
both hex encoded and compared in constant time.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_

from app.adoptrees.logging_config import payment_logger
from app.adoptrees.modules.orders.service import mark_order_failed, mark_order_paid
from app.adoptrees.modules.payments.razorpay_client import RazorpayClient, RazorpayError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.adoptrees.modules.orders.models import Order

logger = logging.getLogger(__name__)

VERIFY_FIELDS = ("razorpay_order_id", "razorpay_payment_id", "razorpay_signature", "order_id")


def client_from_config(config: dict) -> RazorpayClient:
    key_id = (config.get("RAZORPAY_KEY_ID") or "").strip()
    key_secret = (config.get("RAZORPAY_KEY_SECRET") or "").strip()
    if not key_id or not key_secret:
        raise RazorpayError("Payment gateway configuration error")
    return RazorpayClient(key_id=key_id, key_secret=key_secret)


def amount_in_paise(amount: float) -> int:
    return int(round(amount * 100))


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_payment_signature(key_secret: str, razorpay_order_id: str, razorpay_payment_id: str, signature: str) -> bool:
    if not key_secret or not signature:
        return False
    expected = _hmac_hex(key_secret, f"{razorpay_order_id}|{razorpay_payment_id}".encode("utf-8"))
    return hmac.compare_digest(expected, signature.strip())


def verify_webhook_signature(webhook_secret: str, body: bytes, signature: str | None) -> bool:
    if not webhook_secret or not signature:
        return False
    return hmac.compare_digest(_hmac_hex(webhook_secret, body), signature.strip())


def attach_gateway_order(s: "Session", order: "Order", client: RazorpayClient, currency: str) -> dict[str, Any]:
    """Create the gateway order for `order.final_amount` and remember its id on the order."""
    amount = amount_in_paise(order.final_amount)
    gateway_order = client.create_order(
        amount_paise=amount,
        currency=currency,
        receipt=order.order_id,
        notes={"order_id": order.order_id, "user_email": order.user_email},
    )
    order.razorpay_order_id = gateway_order["id"]
    order.updated_at = datetime.utcnow()
    payment_logger.event(
        "razorpay_order_created",
        order_id=order.order_id,
        razorpay_order_id=order.razorpay_order_id,
        amount=amount,
        currency=currency,
    )
    return gateway_order


def confirm_checkout_payment(s: "Session", order: "Order", razorpay_payment_id: str) -> bool:
    """Mark a verified checkout payment. Returns False when the order was already paid."""
    changed = mark_order_paid(s, order, razorpay_payment_id, source="checkout")
    if changed:
        payment_logger.event(
            "payment_verified",
            order_id=order.order_id,
            payment_id=razorpay_payment_id,
            amount=order.final_amount,
            wellwisher_id=order.assigned_wellwisher_id,
        )
    return changed


def reject_checkout_payment(s: "Session", order: "Order", razorpay_payment_id: str | None) -> None:
    if order.payment_status == "pending":
        mark_order_failed(s, order, source="checkout")
    payment_logger.error(
        "payment_signature_mismatch",
        order_id=order.order_id,
        payment_id=razorpay_payment_id,
        razorpay_order_id=order.razorpay_order_id,
    )


def _find_order_for_payment(s: "Session", payment: dict[str, Any]) -> "Order | None":
    from app.adoptrees.modules.orders.models import Order

    clauses = []
    if payment.get("id"):
        clauses.append(Order.payment_id == payment["id"])
    if payment.get("order_id"):
        clauses.append(Order.razorpay_order_id == payment["order_id"])
    if not clauses:
        return None
    return s.query(Order).filter(or_(*clauses)).order_by(Order.id.asc()).first()


def _entity(payload: dict[str, Any], name: str) -> dict[str, Any]:
    node = (payload.get("payload") or {}).get(name) or {}
    entity = node.get("entity") if isinstance(node, dict) else None
    return entity if isinstance(entity, dict) else {}


def already_processed(s: "Session", webhook_id: str | None) -> bool:
    from app.adoptrees.modules.payments.models import ProcessedWebhook

    if not webhook_id:
        return False
    return s.query(ProcessedWebhook.id).filter(ProcessedWebhook.webhook_id == webhook_id).first() is not None


def remember_webhook(s: "Session", webhook_id: str | None, event: str) -> None:
    from app.adoptrees.modules.payments.models import ProcessedWebhook

    if webhook_id:
        s.add(ProcessedWebhook(webhook_id=webhook_id, event=event[:64], processed_at=datetime.utcnow()))


def handle_webhook_event(s: "Session", payload: dict[str, Any]) -> dict[str, Any]:
    """
    Apply one webhook event. Returns a small result dict describing what happened;
    the caller commits.
    """
    from app.adoptrees.modules.orders.models import Order

    event = str(payload.get("event") or "").strip()
    payment = _entity(payload, "payment")

    if event == "payment.captured":
        order = _find_order_for_payment(s, payment)
        if not order:
            payment_logger.error("webhook_order_not_found", webhook_event=event, payment_id=payment.get("id"))
            return {"event": event, "handled": False, "reason": "order not found"}
        changed = mark_order_paid(s, order, payment.get("id"), source="webhook")
        payment_logger.event("payment_captured", order_id=order.order_id, payment_id=payment.get("id"), changed=changed)
        return {"event": event, "handled": True, "order_id": order.order_id, "changed": changed}

    if event == "payment.failed":
        order = _find_order_for_payment(s, payment)
        if not order:
            payment_logger.error("webhook_order_not_found", webhook_event=event, payment_id=payment.get("id"))
            return {"event": event, "handled": False, "reason": "order not found"}
        changed = mark_order_failed(s, order, source="webhook", cancel=True)
        payment_logger.event(
            "payment_failed",
            order_id=order.order_id,
            payment_id=payment.get("id"),
            error=payment.get("error_description"),
            changed=changed,
        )
        return {"event": event, "handled": True, "order_id": order.order_id, "changed": changed}

    if event == "order.paid":
        gateway_order = _entity(payload, "order")
        receipt = gateway_order.get("receipt")
        order = s.query(Order).filter(Order.order_id == receipt).one_or_none() if receipt else None
        if not order:
            payment_logger.error("webhook_order_not_found", webhook_event=event, receipt=receipt)
            return {"event": event, "handled": False, "reason": "order not found"}
        changed = mark_order_paid(s, order, payment.get("id") or order.payment_id, source="webhook")
        payment_logger.event("order_paid", order_id=order.order_id, payment_id=order.payment_id, changed=changed)
        return {"event": event, "handled": True, "order_id": order.order_id, "changed": changed}

    logger.info("Unhandled Razorpay webhook event %s", event or "<empty>")
    return {"event": event, "handled": False, "reason": "unhandled event"}
