from __future__ import annotations

from flask import Blueprint, g, request

from app.adoptrees.constants import USER_TYPES
from app.adoptrees.db import db_session
from app.adoptrees.modules.coupons.service import (
    CouponError,
    available_coupons,
    check_coupon,
    compute_discount,
    serialize_coupon,
)
from app.adoptrees.rbac import require_login
from app.adoptrees.utils import fail, ok, parse_float, request_payload

bp = Blueprint("coupons", __name__)


@bp.post("/coupons/validate")
@require_login
def coupons_validate():
    payload = request_payload()
    user = g.current_user
    user_type = (payload.get("user_type") or "").strip() or None
    if user_type and user_type not in USER_TYPES:
        return fail("Invalid user type", 400)
    subtotal = parse_float(payload.get("subtotal"))
    if subtotal is None or subtotal < 0:
        return fail("Subtotal must be a non-negative number", 400)

    try:
        coupon = check_coupon(db_session(), payload.get("code") or "", user, user_type)
    except CouponError as e:
        return fail(str(e), e.status)

    discount, final = compute_discount(subtotal, coupon.discount_percentage)
    return ok(
        {
            "code": coupon.code,
            "discount_percentage": coupon.discount_percentage,
            "discount_amount": discount,
            "subtotal": round(subtotal, 2),
            "final_amount": final,
        },
        message="Coupon applied",
    )


@bp.get("/coupons/available")
@require_login
def coupons_available():
    user_type = (request.args.get("user_type") or "").strip() or None
    if user_type and user_type not in USER_TYPES:
        return fail("Invalid user type", 400)
    coupons = available_coupons(db_session(), g.current_user, user_type)
    return ok([serialize_coupon(c) for c in coupons], count=len(coupons))
