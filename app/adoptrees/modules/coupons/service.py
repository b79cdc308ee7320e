from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.adoptrees.audit import record_event
from app.adoptrees.constants import COUPON_USAGE_LIMIT_TYPES, USER_TYPES
from app.adoptrees.utils import iso, parse_float, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.adoptrees.models import User
    from app.adoptrees.modules.coupons.models import Coupon
    from app.adoptrees.modules.orders.models import Order


CODE_RE = re.compile(r"^[A-Z0-9]+$")


class CouponError(ValueError):
    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.status = status


def normalize_code(raw: str | None) -> str:
    return (raw or "").strip().upper()


def validate_coupon_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate coupon creation/update payload. Returns list of errors."""
    errors = []

    def present(key: str) -> bool:
        return not partial or key in payload

    if present("code"):
        code = normalize_code(payload.get("code"))
        if not code or len(code) > 32 or not CODE_RE.match(code):
            errors.append("Code must contain only letters and numbers (max 32).")

    if present("category"):
        if (payload.get("category") or "").strip() not in USER_TYPES:
            errors.append("Category must be individual or company.")

    if present("discount_percentage"):
        pct = parse_float(payload.get("discount_percentage"))
        if pct is None or pct < 1 or pct > 100:
            errors.append("Discount percentage must be between 1 and 100.")

    limit_type = (payload.get("usage_limit_type") or "").strip()
    if present("usage_limit_type") and limit_type and limit_type not in COUPON_USAGE_LIMIT_TYPES:
        errors.append("Usage limit type must be unlimited or custom.")
    if limit_type == "custom":
        total = parse_int(payload.get("total_usage_limit"))
        if total is None or total < 1:
            errors.append("Total usage limit is required for custom limits and must be at least 1.")

    if payload.get("per_user_usage_limit") not in (None, ""):
        per_user = parse_int(payload.get("per_user_usage_limit"))
        if per_user is None or per_user < 1:
            errors.append("Per-user usage limit must be at least 1.")
    return errors


def create_coupon(s: "Session", payload: dict, user: "User") -> "Coupon":
    from app.adoptrees.modules.coupons.models import Coupon

    code = normalize_code(payload.get("code"))
    if s.query(Coupon.id).filter(Coupon.code == code).first():
        raise CouponError("Coupon code already exists", 400)

    now = datetime.utcnow()
    limit_type = (payload.get("usage_limit_type") or "unlimited").strip()
    coupon = Coupon(
        code=code,
        category=(payload.get("category") or "").strip(),
        discount_percentage=parse_float(payload.get("discount_percentage"), 0.0),
        usage_limit_type=limit_type,
        total_usage_limit=parse_int(payload.get("total_usage_limit")) if limit_type == "custom" else None,
        per_user_usage_limit=parse_int(payload.get("per_user_usage_limit"), 1) or 1,
        used_count=0,
        is_active=payload.get("is_active", True) not in (False, "false", "0", 0),
        created_at=now,
        updated_at=now,
    )
    s.add(coupon)
    s.flush()
    record_event(
        s,
        actor=user,
        action="coupon.create",
        entity_type="Coupon",
        entity_id=str(coupon.id),
        metadata={"code": coupon.code, "discount_percentage": coupon.discount_percentage},
    )
    return coupon


def update_coupon(s: "Session", coupon: "Coupon", payload: dict, user: "User") -> "Coupon":
    from app.adoptrees.modules.coupons.models import Coupon

    changes: dict[str, dict] = {}

    def _set(field: str, new) -> None:
        old = getattr(coupon, field)
        if new != old:
            changes[field] = {"old": old, "new": new}
            setattr(coupon, field, new)

    if "code" in payload:
        code = normalize_code(payload.get("code"))
        if code != coupon.code and s.query(Coupon.id).filter(Coupon.code == code).first():
            raise CouponError("Coupon code already exists", 400)
        _set("code", code)
    if "category" in payload:
        _set("category", (payload.get("category") or "").strip())
    if "discount_percentage" in payload:
        _set("discount_percentage", parse_float(payload.get("discount_percentage")))
    if "usage_limit_type" in payload:
        _set("usage_limit_type", (payload.get("usage_limit_type") or "unlimited").strip())
    if coupon.usage_limit_type == "unlimited":
        _set("total_usage_limit", None)
    elif "total_usage_limit" in payload:
        _set("total_usage_limit", parse_int(payload.get("total_usage_limit")))
    if "per_user_usage_limit" in payload:
        _set("per_user_usage_limit", parse_int(payload.get("per_user_usage_limit"), 1) or 1)
    if "is_active" in payload:
        _set("is_active", payload.get("is_active") not in (False, "false", "0", 0, None))

    coupon.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="coupon.edit",
        entity_type="Coupon",
        entity_id=str(coupon.id),
        metadata={"code": coupon.code, "changes": changes},
    )
    return coupon


def delete_coupon(s: "Session", coupon: "Coupon", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="coupon.delete",
        entity_type="Coupon",
        entity_id=str(coupon.id),
        metadata={"code": coupon.code},
    )
    s.delete(coupon)


def user_coupon_usage(s: "Session", code: str, user_id: int) -> int:
    from app.adoptrees.modules.orders.models import Order

    return (
        s.query(func.count(Order.id))
        .filter(Order.user_id == user_id, Order.coupon_code == code, Order.payment_status == "paid")
        .scalar()
        or 0
    )


def check_coupon(s: "Session", code: str, user: "User", user_type: str | None = None) -> "Coupon":
    """Raise CouponError unless `user` may apply `code` right now."""
    from app.adoptrees.modules.coupons.models import Coupon

    code = normalize_code(code)
    if not code:
        raise CouponError("Coupon code is required", 400)
    coupon = s.query(Coupon).filter(Coupon.code == code, Coupon.is_active.is_(True)).one_or_none()
    if coupon is None:
        raise CouponError("Invalid or inactive coupon code", 404)

    effective_type = user_type or user.user_type
    if coupon.category != effective_type:
        raise CouponError(f"This coupon is only valid for {coupon.category} accounts", 400)
    if coupon.usage_limit_type == "custom" and coupon.total_usage_limit is not None:
        if coupon.used_count >= coupon.total_usage_limit:
            raise CouponError("This coupon has reached its usage limit", 400)
    if user_coupon_usage(s, coupon.code, user.id) >= coupon.per_user_usage_limit:
        raise CouponError("You have already used this coupon the maximum number of times", 400)
    return coupon


def compute_discount(subtotal: float, discount_percentage: float) -> tuple[float, float]:
    discount = round(subtotal * discount_percentage / 100, 2)
    final = round(max(subtotal - discount, 0.0), 2)
    return discount, final


def available_coupons(s: "Session", user: "User", user_type: str | None = None) -> list["Coupon"]:
    from app.adoptrees.modules.coupons.models import Coupon

    effective_type = user_type or user.user_type
    coupons = (
        s.query(Coupon)
        .filter(Coupon.is_active.is_(True), Coupon.category == effective_type)
        .order_by(Coupon.discount_percentage.desc(), Coupon.code.asc())
        .all()
    )
    out = []
    for c in coupons:
        if c.usage_limit_type == "custom" and c.total_usage_limit is not None and c.used_count >= c.total_usage_limit:
            continue
        if user_coupon_usage(s, c.code, user.id) >= c.per_user_usage_limit:
            continue
        out.append(c)
    return out


def consume_coupon(s: "Session", order: "Order") -> bool:
    """Count one use of the order's coupon. Safe to call more than once per order."""
    from app.adoptrees.modules.coupons.models import Coupon

    if not order.coupon_code or order.coupon_consumed:
        return False
    coupon = s.query(Coupon).filter(Coupon.code == order.coupon_code).one_or_none()
    if coupon is None:
        return False
    coupon.used_count = (coupon.used_count or 0) + 1
    coupon.updated_at = datetime.utcnow()
    order.coupon_consumed = True
    return True


def serialize_coupon(coupon: "Coupon") -> dict:
    remaining = None
    if coupon.usage_limit_type == "custom" and coupon.total_usage_limit is not None:
        remaining = max(coupon.total_usage_limit - coupon.used_count, 0)
    return {
        "id": coupon.id,
        "code": coupon.code,
        "category": coupon.category,
        "discount_percentage": coupon.discount_percentage,
        "usage_limit_type": coupon.usage_limit_type,
        "total_usage_limit": coupon.total_usage_limit,
        "per_user_usage_limit": coupon.per_user_usage_limit,
        "used_count": coupon.used_count,
        "remaining_uses": remaining,
        "is_active": coupon.is_active,
        "created_at": iso(coupon.created_at),
        "updated_at": iso(coupon.updated_at),
    }
