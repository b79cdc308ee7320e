from __future__ import annotations

import logging
import re
import secrets
from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.adoptrees.audit import record_event
from app.adoptrees.constants import ADOPTION_TYPES, ORDER_STATUSES
from app.adoptrees.modules.accounts.service import is_valid_email, normalize_email
from app.adoptrees.modules.coupons.service import consume_coupon, compute_discount
from app.adoptrees.modules.wellwisher.service import create_tasks_for_order, serialize_task
from app.adoptrees.utils import iso, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.adoptrees.models import User
    from app.adoptrees.modules.coupons.models import Coupon
    from app.adoptrees.modules.orders.models import Order, OrderItem

logger = logging.getLogger(__name__)

MAX_ITEM_QUANTITY = 1000
MAX_GIFT_MESSAGE = 500
MAX_ADMIN_NOTES = 1000
CHECKOUT_TEXT_FIELDS = ("gift_message", "gift_recipient_name", "gift_recipient_email", "coupon_code", "payment_method")
ITEM_TEXT_FIELDS = ("adoption_type", "recipient_name", "recipient_email", "gift_message")


class OrderError(ValueError):
    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.status = status


def generate_order_id(s: "Session", user_name: str) -> str:
    """Three letters from the buyer's name (padded with X) plus five random digits."""
    from app.adoptrees.modules.orders.models import Order

    prefix = re.sub(r"[^A-Za-z]", "", user_name or "")[:3].upper().ljust(3, "X")
    for _ in range(20):
        candidate = f"{prefix}{10000 + secrets.randbelow(90000)}"
        if not s.query(Order.id).filter(Order.order_id == candidate).first():
            return candidate
    raise OrderError("Could not allocate an order id", 500)



def validate_checkout_payload(payload: dict) -> list[str]:
    """Validate order items and gift fields. Returns list of errors."""
    errors = []
    bad = [f for f in CHECKOUT_TEXT_FIELDS if payload.get(f) is not None and not isinstance(payload.get(f), str)]
    if bad:
        return [f"{field} must be text." for field in bad]
    items = payload.get("items")
    if not isinstance(items, list) or not items:
        return ["At least one item is required."]

    for idx, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            errors.append(f"Item {idx}: invalid item.")
            continue
        bad = [f for f in ITEM_TEXT_FIELDS if raw.get(f) is not None and not isinstance(raw.get(f), str)]
        if bad:
            errors.append(f"Item {idx}: {', '.join(bad)} must be text.")
            continue
        if parse_int(raw.get("tree_id")) is None:
            errors.append(f"Item {idx}: tree_id is required.")
        qty = parse_int(raw.get("quantity"), 1)
        if qty is None or qty < 1 or qty > MAX_ITEM_QUANTITY:
            errors.append(f"Item {idx}: quantity must be between 1 and {MAX_ITEM_QUANTITY}.")
        adoption_type = (raw.get("adoption_type") or "self").strip()
        if adoption_type not in ADOPTION_TYPES:
            errors.append(f"Item {idx}: adoption type must be self or gift.")
        if adoption_type == "gift":
            name = (raw.get("recipient_name") or payload.get("gift_recipient_name") or "").strip()
            email = normalize_email(raw.get("recipient_email") or payload.get("gift_recipient_email"))
            if not name:
                errors.append(f"Item {idx}: recipient name is required for gifts.")
            if not is_valid_email(email):
                errors.append(f"Item {idx}: a valid recipient email is required for gifts.")
        if len(raw.get("gift_message") or "") > MAX_GIFT_MESSAGE:
            errors.append(f"Item {idx}: gift message must be at most {MAX_GIFT_MESSAGE} characters.")

    if len(payload.get("gift_message") or "") > MAX_GIFT_MESSAGE:
        errors.append(f"Gift message must be at most {MAX_GIFT_MESSAGE} characters.")
    if payload.get("is_gift") in (True, "true", "1", 1):
        if not (payload.get("gift_recipient_name") or "").strip():
            errors.append("Gift recipient name is required.")
        if not is_valid_email(normalize_email(payload.get("gift_recipient_email"))):
            errors.append("A valid gift recipient email is required.")
    return errors


def build_order_items(s: "Session", payload: dict) -> list["OrderItem"]:
    """Snapshot each requested tree. Every tree must exist and be active."""
    from app.adoptrees.modules.catalog.models import Tree
    from app.adoptrees.modules.orders.models import OrderItem

    raw_items = payload["items"]
    tree_ids = {parse_int(raw.get("tree_id")) for raw in raw_items}
    trees = {t.id: t for t in s.query(Tree).filter(Tree.id.in_(tree_ids), Tree.is_active.is_(True)).all()}
    if len(trees) != len(tree_ids):
        raise OrderError("One or more trees not found or inactive", 400)

    items = []
    for position, raw in enumerate(raw_items):
        tree = trees[parse_int(raw.get("tree_id"))]
        adoption_type = (raw.get("adoption_type") or "self").strip()
        is_gift = adoption_type == "gift"
        items.append(
            OrderItem(
                position=position,
                tree_id=tree.id,
                tree_name=tree.name,
                tree_image_url=tree.image_url,
                quantity=parse_int(raw.get("quantity"), 1) or 1,
                price=tree.price,
                oxygen_kgs=tree.oxygen_kgs or 0,
                adoption_type=adoption_type,
                recipient_name=((raw.get("recipient_name") or payload.get("gift_recipient_name") or "").strip() or None)
                if is_gift
                else None,
                recipient_email=(normalize_email(raw.get("recipient_email") or payload.get("gift_recipient_email")) or None)
                if is_gift
                else None,
                gift_message=((raw.get("gift_message") or payload.get("gift_message") or "").strip() or None)
                if is_gift
                else None,
            )
        )
    return items


def create_order(
    s: "Session",
    user: "User",
    items: list["OrderItem"],
    payload: dict,
    *,
    coupon: "Coupon | None" = None,
    payment_method: str | None = None,
) -> "Order":
    from app.adoptrees.modules.orders.models import Order

    now = datetime.utcnow()
    total = round(sum(i.price * i.quantity for i in items), 2)
    discount, final = (0.0, total)
    if coupon is not None:
        discount, final = compute_discount(total, coupon.discount_percentage)

    gift_items = [i for i in items if i.adoption_type == "gift"]
    is_gift = payload.get("is_gift") in (True, "true", "1", 1) or bool(gift_items)
    first_gift = gift_items[0] if gift_items else None
    user_name = user.display_name

    order = Order(
        order_id=generate_order_id(s, user_name),
        user_id=user.id,
        user_email=user.email,
        user_name=user_name,
        user_type=user.user_type,
        total_amount=total,
        coupon_code=coupon.code if coupon else None,
        discount_amount=discount,
        final_amount=final,
        status="pending",
        payment_status="pending",
        payment_method=payment_method,
        is_gift=is_gift,
        gift_recipient_name=((payload.get("gift_recipient_name") or "").strip() or (first_gift.recipient_name if first_gift else None))
        if is_gift
        else None,
        gift_recipient_email=(normalize_email(payload.get("gift_recipient_email")) or (first_gift.recipient_email if first_gift else None))
        if is_gift
        else None,
        gift_message=((payload.get("gift_message") or "").strip() or (first_gift.gift_message if first_gift else None))
        if is_gift
        else None,
        created_at=now,
        updated_at=now,
    )
    order.items.extend(items)
    s.add(order)
    s.flush()

    record_event(
        s,
        actor=user,
        action="order.create",
        entity_type="Order",
        entity_id=order.order_id,
        metadata={
            "total_amount": total,
            "final_amount": final,
            "coupon_code": order.coupon_code,
            "items": len(items),
            "payment_method": payment_method,
        },
    )
    return order


def mark_order_paid(s: "Session", order: "Order", payment_id: str | None, *, source: str) -> bool:
    """
    Confirm payment: paid + confirmed, coupon use counted, planting tasks created.
    Returns False when the order was already paid.
    """
    if order.payment_status == "paid":
        return False
    now = datetime.utcnow()
    order.payment_status = "paid"
    if order.status in ("pending", "cancelled"):
        order.status = "confirmed"
    if payment_id:
        order.payment_id = payment_id
    order.updated_at = now
    consume_coupon(s, order)
    create_tasks_for_order(s, order, now=now)
    record_event(
        s,
        actor=None,
        action="order.paid",
        entity_type="Order",
        entity_id=order.order_id,
        metadata={"payment_id": payment_id, "source": source, "final_amount": order.final_amount},
    )
    return True


def mark_order_failed(s: "Session", order: "Order", *, source: str, cancel: bool = False) -> bool:
    if order.payment_status == "paid":
        return False
    order.payment_status = "failed"
    if cancel:
        order.status = "cancelled"
    order.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=None,
        action="order.payment_failed",
        entity_type="Order",
        entity_id=order.order_id,
        metadata={"source": source, "cancelled": cancel},
    )
    return True


def order_signature(order: "Order", *, include_gift: bool = False) -> tuple:
    items = tuple(sorted((i.tree_id or 0, i.quantity, i.adoption_type or "self") for i in order.items))
    key: tuple = (items, round(order.total_amount, 2))
    if include_gift:
        key += (bool(order.is_gift),)
    return key


def collapse_duplicate_pending(orders: list["Order"]) -> list["Order"]:
    """Keep only the newest of identical unpaid pending orders. Input must be newest first."""
    seen: set[tuple] = set()
    out = []
    for order in orders:
        if order.status == "pending" and order.payment_status == "pending":
            key = order_signature(order)
            if key in seen:
                continue
            seen.add(key)
        out.append(order)
    return out


def list_user_orders(s: "Session", user: "User", *, status: str | None = None) -> list["Order"]:
    from app.adoptrees.modules.orders.models import Order

    q = s.query(Order).filter(Order.user_id == user.id)
    if status:
        q = q.filter(Order.status == status)
    orders = q.order_by(Order.created_at.desc(), Order.id.desc()).all()
    return collapse_duplicate_pending(orders)


def _keep_rank(order: "Order") -> tuple:
    return (
        order.payment_status == "paid",
        order.status == "confirmed",
        order.created_at,
        order.id,
    )


def find_duplicate_groups(s: "Session") -> list[dict]:
    """Group each user's orders by items, total and gift flag; pick the order to keep per group."""
    from app.adoptrees.modules.orders.models import Order

    groups: dict[tuple, list["Order"]] = defaultdict(list)
    for order in s.query(Order).order_by(Order.created_at.desc(), Order.id.desc()).all():
        groups[(order.user_id,) + order_signature(order, include_gift=True)].append(order)

    out = []
    for orders in groups.values():
        if len(orders) < 2:
            continue
        keep = max(orders, key=_keep_rank)
        out.append({"keep": keep, "duplicates": [o for o in orders if o.id != keep.id]})
    return out


def cleanup_duplicates(s: "Session", user: "User", *, dry_run: bool = True) -> dict:
    groups = find_duplicate_groups(s)
    found = 0
    deleted = 0
    report = []
    for group in groups:
        keep = group["keep"]
        entry = {
            "user_id": keep.user_id,
            "user_name": keep.user_name,
            "user_email": keep.user_email,
            "keep_order_id": keep.order_id,
            "duplicate_orders": [],
        }
        for dup in group["duplicates"]:
            found += 1
            # Paid orders are money received; they are reported but never removed.
            removable = dup.payment_status != "paid"
            entry["duplicate_orders"].append(
                {
                    "order_id": dup.order_id,
                    "created_at": iso(dup.created_at),
                    "status": dup.status,
                    "payment_status": dup.payment_status,
                    "total_amount": dup.total_amount,
                    "removable": removable,
                }
            )
            if not dry_run and removable:
                s.delete(dup)
                deleted += 1
        report.append(entry)

    if not dry_run:
        record_event(
            s,
            actor=user,
            action="order.cleanup_duplicates",
            entity_type="Order",
            metadata={"found": found, "deleted": deleted},
        )
    return {
        "dry_run": dry_run,
        "summary": {
            "total_duplicates_found": found,
            "total_duplicates_deleted": deleted,
            "users_affected": len({e["user_id"] for e in report}),
        },
        "duplicates": report[:100],
    }


def update_order_admin(s: "Session", order: "Order", status: str | None, notes: str | None, admin: "User") -> dict:
    changes: dict[str, dict] = {}
    if status is not None:
        if status not in ORDER_STATUSES:
            raise OrderError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}", 400)
        if status != order.status:
            changes["status"] = {"old": order.status, "new": status}
            order.status = status
    if notes is not None:
        if len(notes) > MAX_ADMIN_NOTES:
            raise OrderError(f"Notes must be at most {MAX_ADMIN_NOTES} characters.", 400)
        new_notes = notes.strip() or None
        if new_notes != order.admin_notes:
            changes["admin_notes"] = {"old": order.admin_notes, "new": new_notes}
            order.admin_notes = new_notes
    order.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=admin,
        action="order.admin_update",
        entity_type="Order",
        entity_id=order.order_id,
        metadata={"changes": changes},
    )
    return changes


def delete_order_admin(s: "Session", order: "Order", admin: "User") -> None:
    record_event(
        s,
        actor=admin,
        action="order.delete",
        entity_type="Order",
        entity_id=order.order_id,
        metadata={"user_email": order.user_email, "payment_status": order.payment_status},
    )
    s.delete(order)


def order_metrics(orders: list["Order"]) -> dict[str, Any]:
    status_counts = {status: 0 for status in ORDER_STATUSES}
    user_type_counts = {"individual": 0, "company": 0}
    revenue = 0.0
    gifts = 0
    for o in orders:
        status_counts[o.status] = status_counts.get(o.status, 0) + 1
        user_type_counts[o.user_type] = user_type_counts.get(o.user_type, 0) + 1
        if o.payment_status == "paid":
            revenue += o.final_amount
        if o.is_gift:
            gifts += 1
    return {
        "total_orders": len(orders),
        "total_revenue": round(revenue, 2),
        "status_counts": status_counts,
        "user_type_counts": user_type_counts,
        "gift_orders": gifts,
    }


def serialize_item(item: "OrderItem") -> dict:
    return {
        "tree_id": item.tree_id,
        "tree_name": item.tree_name,
        "tree_image_url": item.tree_image_url,
        "quantity": item.quantity,
        "price": item.price,
        "oxygen_kgs": item.oxygen_kgs,
        "adoption_type": item.adoption_type,
        "recipient_name": item.recipient_name,
        "recipient_email": item.recipient_email,
        "gift_message": item.gift_message,
    }


def serialize_order(order: "Order", *, include_tasks: bool = True, admin: bool = False) -> dict:
    data = {
        "id": order.id,
        "order_id": order.order_id,
        "user_id": order.user_id,
        "user_email": order.user_email,
        "user_name": order.user_name,
        "user_type": order.user_type,
        "items": [serialize_item(i) for i in order.items],
        "total_amount": order.total_amount,
        "coupon_code": order.coupon_code,
        "discount_amount": order.discount_amount,
        "final_amount": order.final_amount,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "payment_id": order.payment_id,
        "is_gift": order.is_gift,
        "gift_recipient_name": order.gift_recipient_name,
        "gift_recipient_email": order.gift_recipient_email,
        "gift_message": order.gift_message,
        "tree_count": order.tree_count,
        "oxygen_total": order.oxygen_total,
        "has_certificate": order.certificate_pdf is not None,
        "created_at": iso(order.created_at),
        "updated_at": iso(order.updated_at),
    }
    if include_tasks:
        data["wellwisher_tasks"] = [serialize_task(t) for t in order.tasks]
    if admin:
        ww = order.assigned_wellwisher
        data["admin_notes"] = order.admin_notes
        data["assigned_wellwisher"] = {"id": ww.id, "name": ww.name, "email": ww.email} if ww else None
    return data


def serialize_public_order(order: "Order") -> dict:
    """Fields safe to show on a public forest profile."""
    return {
        "order_id": order.order_id,
        "user_name": order.user_name,
        "status": order.status,
        "is_gift": order.is_gift,
        "tree_count": order.tree_count,
        "oxygen_total": order.oxygen_total,
        "created_at": iso(order.created_at),
        "items": [
            {
                "tree_name": i.tree_name,
                "tree_image_url": i.tree_image_url,
                "quantity": i.quantity,
                "oxygen_kgs": i.oxygen_kgs,
                "adoption_type": i.adoption_type,
            }
            for i in order.items
        ],
        "wellwisher_tasks": [
            {
                "task_id": t.task_id,
                "status": t.status,
                "location": t.location,
                "planted_at": iso(t.planted_at),
                "images": [img.url for img in t.planting_images],
                "growth_updates": [
                    {"uploaded_at": iso(u.uploaded_at), "days_since_planting": u.days_since_planting, "images": [img.url for img in u.images]}
                    for u in t.growth_updates
                ],
            }
            for t in order.tasks
        ],
    }


def achievers(s: "Session", *, sort_by: str = "trees", limit: int = 100) -> list[dict]:
    """Leaderboard over paid, non-cancelled orders."""
    from app.adoptrees.modules.orders.models import Order

    orders = (
        s.query(Order)
        .filter(Order.payment_status == "paid", Order.status != "cancelled", Order.user_id.isnot(None))
        .all()
    )
    per_user: dict[int, dict] = {}
    for o in orders:
        entry = per_user.setdefault(
            o.user_id,
            {
                "user_id": o.user_id,
                "user_name": o.user_name,
                "user_type": o.user_type,
                "public_id": o.user.public_id if o.user else None,
                "image": o.user.image_url if o.user else None,
                "total_trees": 0,
                "total_oxygen": 0.0,
                "total_orders": 0,
                "total_amount": 0.0,
                "last_adoption": None,
            },
        )
        entry["total_trees"] += o.tree_count
        entry["total_oxygen"] += o.oxygen_total
        entry["total_orders"] += 1
        entry["total_amount"] += o.final_amount if o.final_amount is not None else o.total_amount
        if entry["last_adoption"] is None or o.created_at > entry["last_adoption"]:
            entry["last_adoption"] = o.created_at

    sort_field = {"trees": "total_trees", "oxygen": "total_oxygen", "orders": "total_orders"}.get(sort_by, "total_trees")
    ranked = sorted(per_user.values(), key=lambda e: (-e[sort_field], -e["total_trees"], e["user_id"]))[:limit]
    for rank, entry in enumerate(ranked, start=1):
        entry["rank"] = rank
        entry["total_oxygen"] = round(entry["total_oxygen"], 2)
        entry["total_amount"] = round(entry["total_amount"], 2)
        entry["last_adoption"] = iso(entry["last_adoption"])
    return ranked
