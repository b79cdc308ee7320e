from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func
from werkzeug.security import generate_password_hash

from app.adoptrees.audit import record_event
from app.adoptrees.constants import (
    DEFAULT_TASK_LOCATION,
    GROWTH_UPDATE_INTERVAL_DAYS,
    TASK_STATUSES,
)
from app.adoptrees.images import StoredImage
from app.adoptrees.modules.accounts.service import is_valid_email, normalize_email, password_errors
from app.adoptrees.modules.wellwisher.assignment import assign_wellwisher_equally, reassign_orders_round_robin
from app.adoptrees.utils import iso, parse_float

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.adoptrees.models import User
    from app.adoptrees.modules.orders.models import Order
    from app.adoptrees.modules.wellwisher.models import GrowthUpdate, WellwisherTask


NAME_RE = re.compile(r"^[a-zA-Z\s]+$")
PHONE_RE = re.compile(r"^[\+]?[1-9][\d]{0,15}$")
MAX_NOTES = 500


class TaskStateError(ValueError):
    pass


# ---------- Well-wisher accounts ----------
def validate_wellwisher_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate well-wisher creation/update payload. Returns list of errors."""
    errors = []

    def present(key: str) -> bool:
        return not partial or key in payload

    if present("name"):
        name = (payload.get("name") or "").strip()
        if len(name) < 2 or len(name) > 50 or not NAME_RE.match(name):
            errors.append("Name must be 2-50 characters and contain only letters and spaces.")

    if present("email"):
        email = normalize_email(payload.get("email"))
        if len(email) < 5 or len(email) > 100 or not is_valid_email(email):
            errors.append("A valid email (5-100 characters) is required.")

    if present("phone"):
        phone = re.sub(r"[\s\-()]", "", payload.get("phone") or "")
        if not PHONE_RE.match(phone):
            errors.append("A valid phone number is required.")

    password = payload.get("password") or ""
    if not partial or password:
        errors.extend(password_errors(password, max_len=128, require_special=False))

    if payload.get("address") and len(str(payload.get("address"))) > 500:
        errors.append("Address must be at most 500 characters.")
    return errors


def create_wellwisher(s: "Session", payload: dict, admin: "User") -> "User":
    from app.adoptrees.models import User

    now = datetime.utcnow()
    ww = User(
        email=normalize_email(payload.get("email")),
        password_hash=generate_password_hash(payload["password"]),
        name=(payload.get("name") or "").strip(),
        phone=re.sub(r"[\s\-()]", "", payload.get("phone") or "") or None,
        address=(payload.get("address") or "").strip() or None,
        user_type="individual",
        role="wellwisher",
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    s.add(ww)
    s.flush()
    record_event(
        s,
        actor=admin,
        action="wellwisher.create",
        entity_type="User",
        entity_id=str(ww.id),
        metadata={"email": ww.email, "name": ww.name},
    )
    return ww


def update_wellwisher(s: "Session", ww: "User", payload: dict, admin: "User") -> dict:
    changes: dict[str, dict] = {}

    def _set(field: str, new: Any) -> None:
        old = getattr(ww, field)
        if new != old:
            changes[field] = {"old": old, "new": new}
            setattr(ww, field, new)

    if "name" in payload:
        _set("name", (payload.get("name") or "").strip())
    if "email" in payload:
        _set("email", normalize_email(payload.get("email")))
    if "phone" in payload:
        _set("phone", re.sub(r"[\s\-()]", "", payload.get("phone") or "") or None)
    if "address" in payload:
        _set("address", (payload.get("address") or "").strip() or None)
    if payload.get("password"):
        ww.password_hash = generate_password_hash(payload["password"])
        changes["password"] = {"old": "***", "new": "***"}

    ww.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=admin,
        action="wellwisher.edit",
        entity_type="User",
        entity_id=str(ww.id),
        metadata={"email": ww.email, "changes": changes},
    )
    return changes


def delete_wellwisher(s: "Session", ww: "User", admin: "User") -> tuple[int, int]:
    reassigned, unassigned = reassign_orders_round_robin(s, ww.id)
    record_event(
        s,
        actor=admin,
        action="wellwisher.delete",
        entity_type="User",
        entity_id=str(ww.id),
        metadata={"email": ww.email, "orders_reassigned": reassigned, "orders_unassigned": unassigned},
    )
    s.delete(ww)
    return reassigned, unassigned


def wellwisher_task_counts(s: "Session", wellwisher_ids: list[int]) -> dict[int, dict[str, int]]:
    from app.adoptrees.modules.orders.models import Order
    from app.adoptrees.modules.wellwisher.models import WellwisherTask

    out = {ww_id: {"upcoming": 0, "ongoing": 0, "completed": 0, "updating": 0} for ww_id in wellwisher_ids}
    if not wellwisher_ids:
        return out
    rows = (
        s.query(Order.assigned_wellwisher_id, WellwisherTask.status, func.count(WellwisherTask.id))
        .join(WellwisherTask, WellwisherTask.order_id == Order.id)
        .filter(Order.assigned_wellwisher_id.in_(wellwisher_ids))
        .group_by(Order.assigned_wellwisher_id, WellwisherTask.status)
        .all()
    )
    label = {"pending": "upcoming", "in_progress": "ongoing", "completed": "completed", "updating": "updating"}
    for ww_id, status, count in rows:
        if status in label:
            out[ww_id][label[status]] = count
    return out


def serialize_wellwisher(ww: "User", counts: dict[str, int] | None = None) -> dict:
    counts = counts or {"upcoming": 0, "ongoing": 0, "completed": 0, "updating": 0}
    return {
        "id": ww.id,
        "name": ww.name,
        "email": ww.email,
        "phone": ww.phone,
        "address": ww.address,
        "role": ww.role,
        "is_active": ww.is_active,
        "created_at": iso(ww.created_at),
        "updated_at": iso(ww.updated_at),
        "task_counts": counts,
    }


# ---------- Tasks ----------
def create_tasks_for_order(s: "Session", order: "Order", *, now: datetime | None = None) -> list["WellwisherTask"]:
    """One task per order item; assigns a well-wisher when the order has none. Idempotent."""
    from app.adoptrees.modules.wellwisher.models import WellwisherTask

    if order.assigned_wellwisher_id is None:
        order.assigned_wellwisher_id = assign_wellwisher_equally(s)
    if order.tasks:
        return list(order.tasks)

    now = now or datetime.utcnow()
    gift_note = ""
    if order.is_gift and order.gift_message:
        gift_note = f" Gift message: {order.gift_message}"
    tasks = []
    for index, item in enumerate(order.items):
        task = WellwisherTask(
            position=index,
            task_id=f"{order.order_id}-{index}",
            task=f"Plant and care for {item.tree_name}",
            description=f"Plant {item.quantity} {item.tree_name} tree(s) and provide ongoing care.{gift_note}",
            scheduled_date=now + timedelta(days=index + 1),
            priority="medium",
            status="pending",
            location=DEFAULT_TASK_LOCATION,
            created_at=now,
            updated_at=now,
        )
        order.tasks.append(task)
        tasks.append(task)
    s.flush()
    record_event(
        s,
        actor=None,
        action="order.tasks_created",
        entity_type="Order",
        entity_id=order.order_id,
        metadata={"tasks": len(tasks), "wellwisher_id": order.assigned_wellwisher_id},
    )
    return tasks


def find_task(s: "Session", task_id: str, order_id: str | None = None) -> "WellwisherTask | None":
    from app.adoptrees.modules.orders.models import Order
    from app.adoptrees.modules.wellwisher.models import WellwisherTask

    q = s.query(WellwisherTask).join(Order, WellwisherTask.order_id == Order.id).filter(WellwisherTask.task_id == task_id)
    if order_id:
        q = q.filter(Order.order_id == order_id)
    return q.one_or_none()


def can_manage_task(user: "User", task: "WellwisherTask") -> bool:
    return user.role == "wellwisher" and task.order.assigned_wellwisher_id == user.id


def can_view_task(user: "User", task: "WellwisherTask") -> bool:
    if user.role == "admin":
        return True
    if user.role == "wellwisher":
        return task.order.assigned_wellwisher_id == user.id
    return task.order.user_id == user.id


def update_task_status(s: "Session", task: "WellwisherTask", status: str, user: "User") -> None:
    if status not in TASK_STATUSES:
        raise TaskStateError(f"Invalid status. Must be one of: {', '.join(TASK_STATUSES)}")
    if status in ("completed", "updating") and task.completed_at is None:
        raise TaskStateError("Submit planting details to complete a task")
    old = task.status
    task.status = status
    task.updated_at = datetime.utcnow()
    task.order.updated_at = task.updated_at
    record_event(
        s,
        actor=user,
        action="task.status",
        entity_type="WellwisherTask",
        entity_id=task.task_id,
        metadata={"old": old, "new": status, "order_id": task.order.order_id},
    )


def _parse_client_timestamp(raw: Any) -> datetime | None:
    if raw in (None, ""):
        return None
    text = str(raw).strip()
    if text.isdigit():
        return datetime.utcfromtimestamp(int(text) / 1000)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - (parsed.utcoffset() or timedelta())
    return parsed


def validate_planting_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("task_id") or "").strip():
        errors.append("Task ID is required.")
    if not (payload.get("order_id") or "").strip():
        errors.append("Order ID is required.")
    lat = parse_float(payload.get("latitude"))
    lng = parse_float(payload.get("longitude"))
    if lat is None or lat < -90 or lat > 90:
        errors.append("Latitude must be between -90 and 90.")
    if lng is None or lng < -180 or lng > 180:
        errors.append("Longitude must be between -180 and 180.")
    if len(payload.get("planting_notes") or "") > MAX_NOTES:
        errors.append(f"Notes must be at most {MAX_NOTES} characters.")
    return errors


def record_planting(
    s: "Session",
    task: "WellwisherTask",
    payload: dict,
    images: list[StoredImage],
    user: "User",
    *,
    now: datetime | None = None,
) -> "WellwisherTask":
    """Store planting evidence, complete the task, and complete the order once every task is done."""
    from app.adoptrees.modules.wellwisher.models import TaskImage

    if task.status != "in_progress":
        raise TaskStateError("Task must be in progress to submit planting details")

    now = now or datetime.utcnow()
    task.planted_at = now
    task.completed_at = now
    task.latitude = parse_float(payload.get("latitude"))
    task.longitude = parse_float(payload.get("longitude"))
    task.location_accuracy = parse_float(payload.get("accuracy"))
    task.location_altitude = parse_float(payload.get("altitude"))
    task.location_altitude_accuracy = parse_float(payload.get("altitude_accuracy"))
    task.location_heading = parse_float(payload.get("heading"))
    task.location_speed = parse_float(payload.get("speed"))
    task.location_source = (payload.get("location_source") or "").strip()[:32] or None
    task.location_permission_state = (payload.get("permission_state") or "").strip()[:32] or None
    task.location_client_timestamp = _parse_client_timestamp(payload.get("client_timestamp"))
    task.location = f"{task.latitude:.6f}, {task.longitude:.6f}"
    task.planting_notes = (payload.get("planting_notes") or "").strip() or None
    task.next_growth_update_due = now + timedelta(days=GROWTH_UPDATE_INTERVAL_DAYS)
    task.status = "completed"
    task.updated_at = now
    for img in images:
        task.all_images.append(TaskImage(url=img.url, storage_key=img.key, uploaded_at=now))

    order = task.order
    if all(t.status in ("completed", "updating") for t in order.tasks):
        order.status = "completed"
    order.updated_at = now

    record_event(
        s,
        actor=user,
        action="task.planted",
        entity_type="WellwisherTask",
        entity_id=task.task_id,
        metadata={
            "order_id": order.order_id,
            "images": len(images),
            "latitude": task.latitude,
            "longitude": task.longitude,
            "order_status": order.status,
        },
    )
    return task


def record_growth_update(
    s: "Session",
    task: "WellwisherTask",
    notes: str | None,
    images: list[StoredImage],
    user: "User",
    *,
    now: datetime | None = None,
) -> "GrowthUpdate":
    from app.adoptrees.modules.wellwisher.models import GrowthUpdate, TaskImage

    if task.status not in ("completed", "updating") or task.completed_at is None:
        raise TaskStateError("Task must be completed before uploading growth updates")

    now = now or datetime.utcnow()
    planted = task.planted_at or task.completed_at
    update = GrowthUpdate(
        update_id=f"{task.task_id}-gu-{uuid.uuid4().hex[:8]}",
        uploaded_at=now,
        notes=(notes or "").strip() or None,
        days_since_planting=max((now - planted).days, 0),
    )
    task.growth_updates.append(update)
    for img in images:
        task.all_images.append(TaskImage(url=img.url, storage_key=img.key, uploaded_at=now, growth_update=update))
    task.next_growth_update_due = now + timedelta(days=GROWTH_UPDATE_INTERVAL_DAYS)
    task.status = "completed"
    task.updated_at = now
    task.order.updated_at = now

    record_event(
        s,
        actor=user,
        action="task.growth_update",
        entity_type="WellwisherTask",
        entity_id=task.task_id,
        metadata={"order_id": task.order.order_id, "images": len(images), "days_since_planting": update.days_since_planting},
    )
    return update


def _image_dict(img) -> dict:
    return {"url": img.url, "caption": img.caption, "uploaded_at": iso(img.uploaded_at)}


def serialize_growth_update(update: "GrowthUpdate") -> dict:
    return {
        "update_id": update.update_id,
        "uploaded_at": iso(update.uploaded_at),
        "notes": update.notes,
        "days_since_planting": update.days_since_planting,
        "images": [_image_dict(i) for i in update.images],
    }


def serialize_planting(task: "WellwisherTask") -> dict | None:
    if task.completed_at is None:
        return None
    return {
        "planted_at": iso(task.planted_at),
        "completed_at": iso(task.completed_at),
        "location": {
            "latitude": task.latitude,
            "longitude": task.longitude,
            "accuracy": task.location_accuracy,
            "altitude": task.location_altitude,
            "altitude_accuracy": task.location_altitude_accuracy,
            "heading": task.location_heading,
            "speed": task.location_speed,
            "source": task.location_source,
            "permission_state": task.location_permission_state,
            "client_timestamp": iso(task.location_client_timestamp),
        },
        "notes": task.planting_notes,
        "images": [_image_dict(i) for i in task.planting_images],
    }


def serialize_task(task: "WellwisherTask", *, with_order: bool = False) -> dict:
    data = {
        "task_id": task.task_id,
        "task": task.task,
        "description": task.description,
        "scheduled_date": iso(task.scheduled_date),
        "priority": task.priority,
        "status": task.status,
        "location": task.location,
        "planting_details": serialize_planting(task),
        "next_growth_update_due": iso(task.next_growth_update_due),
        "growth_updates": [serialize_growth_update(u) for u in task.growth_updates],
    }
    if with_order:
        order = task.order
        item = order.items[task.position] if task.position < len(order.items) else None
        data["order"] = {
            "order_id": order.order_id,
            "user_name": order.user_name,
            "user_email": order.user_email,
            "status": order.status,
            "total_amount": order.total_amount,
            "is_gift": order.is_gift,
            "gift_recipient_name": order.gift_recipient_name,
            "gift_message": order.gift_message,
            "created_at": iso(order.created_at),
            "items": [
                {"tree_name": i.tree_name, "quantity": i.quantity, "tree_image_url": i.tree_image_url}
                for i in order.items
            ],
        }
        data["item"] = (
            {"tree_name": item.tree_name, "quantity": item.quantity, "tree_image_url": item.tree_image_url}
            if item
            else None
        )
    return data


def list_tasks_for_wellwisher(
    s: "Session", user: "User", status: str, *, page: int, limit: int
) -> tuple[list["WellwisherTask"], int]:
    from app.adoptrees.modules.orders.models import Order
    from app.adoptrees.modules.wellwisher.models import WellwisherTask

    q = (
        s.query(WellwisherTask)
        .join(Order, WellwisherTask.order_id == Order.id)
        .filter(Order.assigned_wellwisher_id == user.id, WellwisherTask.status == status)
    )
    total = q.count()
    tasks = (
        q.order_by(WellwisherTask.scheduled_date.asc(), WellwisherTask.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return tasks, total


def wellwisher_stats(s: "Session", user: "User", *, now: datetime | None = None) -> dict:
    from app.adoptrees.modules.orders.models import Order
    from app.adoptrees.modules.wellwisher.models import WellwisherTask

    now = now or datetime.utcnow()
    start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    tasks = (
        s.query(WellwisherTask)
        .join(Order, WellwisherTask.order_id == Order.id)
        .filter(Order.assigned_wellwisher_id == user.id)
        .all()
    )

    counts = {status: 0 for status in TASK_STATUSES}
    growth_due = 0
    trees_helped = 0
    for t in tasks:
        counts[t.status] = counts.get(t.status, 0) + 1
        if t.status == "completed" and t.next_growth_update_due and t.next_growth_update_due <= start_of_today:
            growth_due += 1
        if t.status in ("completed", "updating"):
            items = t.order.items
            if t.position < len(items):
                trees_helped += items[t.position].quantity

    recent = sorted(tasks, key=lambda t: t.updated_at or t.created_at, reverse=True)[:5]
    return {
        "pending_tasks": counts["pending"],
        "in_progress_tasks": counts["in_progress"],
        "completed_tasks": counts["completed"],
        "updating_tasks": counts["updating"],
        "growth_updates_due": growth_due,
        "total_tasks": len(tasks),
        "total_trees_helped": trees_helped,
        "recent_activity": [
            {
                "task_id": t.task_id,
                "task": t.task,
                "status": t.status,
                "order_id": t.order.order_id,
                "updated_at": iso(t.updated_at),
            }
            for t in recent
        ],
    }
