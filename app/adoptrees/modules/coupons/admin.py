from __future__ import annotations

from flask import Blueprint, g

from app.adoptrees.db import db_session
from app.adoptrees.models import User
from app.adoptrees.modules.coupons.models import Coupon
from app.adoptrees.modules.coupons.service import (
    CouponError,
    create_coupon,
    delete_coupon,
    serialize_coupon,
    update_coupon,
    validate_coupon_payload,
)
from app.adoptrees.rbac import require_permission
from app.adoptrees.utils import fail, ok, request_payload

bp = Blueprint("coupons_admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/coupons")
@require_permission("coupons.manage")
def coupons_list():
    coupons = db_session().query(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()
    return ok([serialize_coupon(c) for c in coupons], count=len(coupons))


@bp.post("/coupons")
@require_permission("coupons.manage")
def coupons_create():
    s = db_session()
    payload = request_payload()
    errors = validate_coupon_payload(payload)
    if errors:
        return fail("Validation failed", 400, details=errors)
    try:
        coupon = create_coupon(s, payload, _current_user())
    except CouponError as e:
        return fail(str(e), e.status)
    s.commit()
    return ok(serialize_coupon(coupon), status=201, message="Coupon created successfully")


@bp.get("/coupons/<int:coupon_id>")
@require_permission("coupons.manage")
def coupon_detail(coupon_id: int):
    coupon = db_session().get(Coupon, coupon_id)
    if not coupon:
        return fail("Coupon not found", 404)
    return ok(serialize_coupon(coupon))


@bp.put("/coupons/<int:coupon_id>")
@require_permission("coupons.manage")
def coupons_update(coupon_id: int):
    s = db_session()
    coupon = s.get(Coupon, coupon_id)
    if not coupon:
        return fail("Coupon not found", 404)
    payload = request_payload()
    errors = validate_coupon_payload(payload, partial=True)
    if errors:
        return fail("Validation failed", 400, details=errors)
    try:
        update_coupon(s, coupon, payload, _current_user())
    except CouponError as e:
        return fail(str(e), e.status)
    s.commit()
    return ok(serialize_coupon(coupon), message="Coupon updated successfully")


@bp.delete("/coupons/<int:coupon_id>")
@require_permission("coupons.manage")
def coupons_delete(coupon_id: int):
    s = db_session()
    coupon = s.get(Coupon, coupon_id)
    if not coupon:
        return fail("Coupon not found", 404)
    delete_coupon(s, coupon, _current_user())
    s.commit()
    return ok(message="Coupon deleted successfully")
