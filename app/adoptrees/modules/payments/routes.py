from __future__ import annotations

import json

from flask import Blueprint, current_app, g, request

from app.adoptrees.constants import CURRENCY, PAYMENT_METHOD_RAZORPAY
from app.adoptrees.db import db_session
from app.adoptrees.logging_config import payment_logger
from app.adoptrees.modules.cart.service import clear_cart
from app.adoptrees.modules.coupons.service import CouponError
from app.adoptrees.modules.orders.models import Order
from app.adoptrees.modules.orders.routes import checkout_payload, prepare_order
from app.adoptrees.modules.orders.service import OrderError, serialize_order
from app.adoptrees.modules.payments.razorpay_client import RazorpayAuthError, RazorpayError
from app.adoptrees.modules.payments.service import (
    VERIFY_FIELDS,
    already_processed,
    attach_gateway_order,
    client_from_config,
    confirm_checkout_payment,
    handle_webhook_event,
    reject_checkout_payment,
    remember_webhook,
    verify_payment_signature,
    verify_webhook_signature,
)
from app.adoptrees.rbac import rate_limit, require_permission
from app.adoptrees.utils import fail, ok, request_payload

bp = Blueprint("payments", __name__)


@bp.post("/payments/create-order")
@rate_limit("payments.create")
@require_permission("orders.create")
def create_payment_order():
    s = db_session()
    user = g.current_user
    try:
        client = client_from_config(current_app.config)
    except RazorpayError:
        payment_logger.error("razorpay_not_configured", user_id=user.id)
        return fail("Payment gateway configuration error", 500)

    payload, from_cart = checkout_payload()
    try:
        order = prepare_order(s, user, payload, payment_method=PAYMENT_METHOD_RAZORPAY)
    except (OrderError, CouponError) as e:
        s.rollback()
        return fail(str(e), e.status)

    try:
        gateway_order = attach_gateway_order(s, order, client, CURRENCY)
    except RazorpayAuthError:
        s.rollback()
        payment_logger.error("razorpay_auth_failed", user_id=user.id)
        return fail("Invalid Razorpay credentials", 500)
    except RazorpayError as e:
        s.rollback()
        payment_logger.error("razorpay_order_failed", user_id=user.id, error=str(e))
        return fail("Failed to create payment order", 502)

    s.commit()
    if from_cart:
        clear_cart()
    return ok(
        {
            "razorpay_order_id": gateway_order["id"],
            "order_id": order.order_id,
            "amount": gateway_order.get("amount"),
            "currency": gateway_order.get("currency") or CURRENCY,
            "razorpay_key_id": current_app.config.get("RAZORPAY_KEY_ID"),
        },
        status=201,
    )


@bp.post("/payments/verify-payment")
@rate_limit("payments.verify")
@require_permission("orders.create")
def verify_payment():
    s = db_session()
    payload = request_payload()
    missing = [f for f in VERIFY_FIELDS if not str(payload.get(f) or "").strip()]
    if missing:
        return fail("Missing required payment verification fields", 400, details=missing)

    order = (
        s.query(Order)
        .filter(Order.order_id == str(payload["order_id"]).strip(), Order.user_id == g.current_user.id)
        .one_or_none()
    )
    if not order:
        return fail("Order not found", 404)

    razorpay_order_id = str(payload["razorpay_order_id"]).strip()
    razorpay_payment_id = str(payload["razorpay_payment_id"]).strip()
    if order.razorpay_order_id and order.razorpay_order_id != razorpay_order_id:
        reject_checkout_payment(s, order, razorpay_payment_id)
        s.commit()
        return fail("Invalid payment signature", 400)

    key_secret = current_app.config.get("RAZORPAY_KEY_SECRET") or ""
    if not verify_payment_signature(key_secret, razorpay_order_id, razorpay_payment_id, str(payload["razorpay_signature"])):
        reject_checkout_payment(s, order, razorpay_payment_id)
        s.commit()
        return fail("Invalid payment signature", 400)

    if order.payment_status == "paid":
        return ok(serialize_order(order), message="Payment already processed")

    confirm_checkout_payment(s, order, razorpay_payment_id)
    s.commit()
    current_app.logger.info("Payment verified (order_id=%s payment_id=%s)", order.order_id, razorpay_payment_id)
    return ok(serialize_order(order), message="Payment verified successfully")


@bp.post("/webhooks/razorpay")
def razorpay_webhook():
    body = request.get_data(cache=False)
    signature = request.headers.get("X-Razorpay-Signature")
    secret = current_app.config.get("RAZORPAY_WEBHOOK_SECRET") or ""
    if not verify_webhook_signature(secret, body, signature):
        payment_logger.error("webhook_signature_invalid", has_signature=bool(signature))
        return fail("Invalid signature", 400)

    try:
        payload = json.loads(body.decode("utf-8"))
    except ValueError:
        return fail("Invalid JSON payload", 400)
    if not isinstance(payload, dict):
        return fail("Invalid JSON payload", 400)

    s = db_session()
    webhook_id = request.headers.get("X-Razorpay-Webhook-Id") or payload.get("id")
    event = str(payload.get("event") or "").strip()
    if already_processed(s, webhook_id):
        payment_logger.event("webhook_duplicate", webhook_id=webhook_id, webhook_event=event)
        return ok({"duplicate": True}, message="Webhook already processed")

    result = handle_webhook_event(s, payload)
    remember_webhook(s, webhook_id, event)
    s.commit()
    payment_logger.event(
        "webhook_processed",
        webhook_id=webhook_id,
        webhook_event=event,
        handled=result["handled"],
        order_id=result.get("order_id"),
    )
    return ok(result)
