from __future__ import annotations

from datetime import datetime
from io import BytesIO

from flask import Blueprint, current_app, g, request, send_file

from app.adoptrees.db import db_session
from app.adoptrees.models import User
from app.adoptrees.modules.accounts.service import ensure_public_id, public_profile_url
from app.adoptrees.modules.cart.service import cart_checkout_items, clear_cart
from app.adoptrees.modules.coupons.service import CouponError, check_coupon
from app.adoptrees.modules.orders.certificates import render_certificate_pdf
from app.adoptrees.modules.orders.models import Order
from app.adoptrees.modules.orders.service import (
    OrderError,
    achievers,
    build_order_items,
    create_order,
    list_user_orders,
    serialize_order,
    serialize_public_order,
    validate_checkout_payload,
)
from app.adoptrees.modules.wellwisher.service import create_tasks_for_order
from app.adoptrees.rbac import require_login, require_permission
from app.adoptrees.utils import fail, ok, pagination_meta, parse_int, parse_pagination, request_payload

bp = Blueprint("orders", __name__)


def checkout_payload() -> tuple[dict, bool]:
    """Request payload with items taken from the cart when the client sends none."""
    payload = dict(request_payload())
    from_cart = False
    if not payload.get("items"):
        payload["items"] = cart_checkout_items()
        from_cart = True
    return payload, from_cart


def prepare_order(s, user: User, payload: dict, *, payment_method: str | None) -> Order:
    """Validate, price and persist a pending order. Raises OrderError / CouponError."""
    errors = validate_checkout_payload(payload)
    if errors:
        raise OrderError("; ".join(errors), 400)
    items = build_order_items(s, payload)
    coupon = None
    if (payload.get("coupon_code") or "").strip():
        coupon = check_coupon(s, payload["coupon_code"], user)
    return create_order(s, user, items, payload, coupon=coupon, payment_method=payment_method)


@bp.post("/orders")
@require_permission("orders.create")
def orders_create():
    s = db_session()
    user = g.current_user
    payload, from_cart = checkout_payload()
    try:
        order = prepare_order(s, user, payload, payment_method=str(payload.get("payment_method") or "").strip() or None)
    except (OrderError, CouponError) as e:
        return fail(str(e), e.status)
    create_tasks_for_order(s, order)
    s.commit()
    if from_cart:
        clear_cart()
    current_app.logger.info("Order placed (order_id=%s user_id=%s)", order.order_id, user.id)
    return ok(serialize_order(order), status=201, message="Order created successfully")


@bp.get("/orders")
@require_permission("orders.view")
def orders_list():
    s = db_session()
    page, limit = parse_pagination(request.args, default_limit=50, max_limit=100)
    status = (request.args.get("status") or "").strip() or None
    orders = list_user_orders(s, g.current_user, status=status)
    window = orders[(page - 1) * limit : page * limit]
    return ok([serialize_order(o) for o in window], pagination=pagination_meta(page, limit, len(orders)))


@bp.get("/orders/<order_id>")
@require_login
def order_detail(order_id: str):
    s = db_session()
    order = s.query(Order).filter(Order.order_id == order_id).one_or_none()
    user = g.current_user
    if not order:
        return fail("Order not found", 404)
    if order.user_id != user.id and user.role != "admin":
        return fail("Forbidden", 403)
    return ok(serialize_order(order, admin=user.role == "admin"))


@bp.get("/public/users/<public_id>/orders")
def public_orders(public_id: str):
    s = db_session()
    user = s.query(User).filter(User.public_id == public_id.lower(), User.is_active.is_(True)).one_or_none()
    if not user:
        return fail("User not found", 404)
    orders = (
        s.query(Order)
        .filter(Order.user_id == user.id, Order.payment_status == "paid", Order.status != "cancelled")
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    return ok(
        {
            "user": {
                "name": user.display_name,
                "user_type": user.user_type,
                "image": user.image_url,
                "public_id": user.public_id,
                "member_since": user.created_at.isoformat(),
            },
            "orders": [serialize_public_order(o) for o in orders],
            "total_trees": sum(o.tree_count for o in orders),
            "total_oxygen": round(sum(o.oxygen_total for o in orders), 2),
        }
    )


@bp.get("/public/users/<public_id>/orders/<order_id>")
def public_order_detail(public_id: str, order_id: str):
    s = db_session()
    user = s.query(User).filter(User.public_id == public_id.lower(), User.is_active.is_(True)).one_or_none()
    if not user:
        return fail("User not found", 404)
    order = (
        s.query(Order)
        .filter(Order.order_id == order_id, Order.user_id == user.id, Order.payment_status == "paid")
        .one_or_none()
    )
    if not order:
        return fail("Order not found", 404)
    return ok(serialize_public_order(order))


@bp.get("/achievers")
def achievers_list():
    limit = max(1, min(parse_int(request.args.get("limit"), 100) or 100, 500))
    sort_by = (request.args.get("sort_by") or "trees").strip()
    if sort_by not in ("trees", "oxygen", "orders"):
        return fail("sort_by must be one of: trees, oxygen, orders", 400)
    rows = achievers(db_session(), sort_by=sort_by, limit=limit)
    return ok(rows, count=len(rows), sort_by=sort_by)


@bp.get("/certificates/<order_id>")
@require_login
def certificate(order_id: str):
    s = db_session()
    user = g.current_user
    order = s.query(Order).filter(Order.order_id == order_id).one_or_none()
    if not order:
        return fail("Order not found", 404)
    if order.user_id != user.id:
        return fail("Forbidden", 403)
    if order.payment_status != "paid":
        return fail("Certificate is available once payment is complete", 400)

    if order.certificate_pdf is None:
        public_id = ensure_public_id(s, user)
        order.certificate_pdf = render_certificate_pdf(
            user_name=order.user_name,
            trees=order.tree_count,
            oxygen_kgs=order.oxygen_total,
            order_id=order.order_id,
            profile_url=public_profile_url(public_id),
            issued_on=(order.updated_at or datetime.utcnow()).date(),
        )
        s.commit()

    return send_file(
        BytesIO(order.certificate_pdf),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"certificate-{order.order_id}.pdf",
    )
