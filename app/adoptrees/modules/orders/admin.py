from __future__ import annotations

from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, request
from sqlalchemy import or_

from app.adoptrees.db import db_session
from app.adoptrees.modules.orders.models import Order, OrderItem
from app.adoptrees.modules.orders.service import (
    OrderError,
    cleanup_duplicates,
    delete_order_admin,
    order_metrics,
    serialize_order,
    update_order_admin,
)
from app.adoptrees.rbac import require_permission
from app.adoptrees.utils import fail, ok, pagination_meta, parse_date, parse_pagination, request_payload

bp = Blueprint("orders_admin", __name__)

SORT_FIELDS = {
    "created_at": Order.created_at,
    "updated_at": Order.updated_at,
    "total_amount": Order.total_amount,
    "final_amount": Order.final_amount,
    "status": Order.status,
    "user_name": Order.user_name,
    "order_id": Order.order_id,
}


def _filtered_query(s):
    search = (request.args.get("search") or "").strip()
    status = (request.args.get("status") or "").strip()
    user_type = (request.args.get("user_type") or "").strip()
    start_date = parse_date(request.args.get("start_date"))
    end_date = parse_date(request.args.get("end_date"))

    q = s.query(Order)
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                Order.order_id.ilike(like),
                Order.user_email.ilike(like),
                Order.user_name.ilike(like),
                Order.items.any(OrderItem.tree_name.ilike(like)),
            )
        )
    if status:
        q = q.filter(Order.status == status)
    if user_type:
        q = q.filter(Order.user_type == user_type)
    if start_date:
        q = q.filter(Order.created_at >= datetime.combine(start_date, datetime.min.time()))
    if end_date:
        # Inclusive of the whole end day.
        q = q.filter(Order.created_at < datetime.combine(end_date, datetime.min.time()) + timedelta(days=1))
    return q


@bp.get("/adoptions")
@require_permission("adoptions.manage")
def adoptions_list():
    s = db_session()
    page, limit = parse_pagination(request.args, default_limit=20, max_limit=100)
    sort_by = (request.args.get("sort_by") or "created_at").strip()
    sort_order = (request.args.get("sort_order") or "desc").strip().lower()
    column = SORT_FIELDS.get(sort_by, Order.created_at)
    ordering = column.asc() if sort_order == "asc" else column.desc()

    try:
        q = _filtered_query(s)
    except ValueError:
        return fail("Dates must be YYYY-MM-DD", 400)
    total = q.count()
    orders = q.order_by(ordering, Order.id.desc()).offset((page - 1) * limit).limit(limit).all()
    metrics = order_metrics(q.all())
    return ok(
        [serialize_order(o, admin=True) for o in orders],
        pagination=pagination_meta(page, limit, total),
        metrics=metrics,
    )


@bp.get("/adoptions/all")
@require_permission("adoptions.manage")
def adoptions_all():
    s = db_session()
    orders = s.query(Order).order_by(Order.created_at.desc(), Order.id.desc()).all()
    return ok([serialize_order(o, admin=True) for o in orders], metrics=order_metrics(orders))


@bp.put("/adoptions")
@require_permission("adoptions.manage")
def adoptions_update():
    s = db_session()
    payload = request_payload()
    order_id = (payload.get("order_id") or "").strip()
    if not order_id:
        return fail("Order ID is required", 400)
    order = s.query(Order).filter(Order.order_id == order_id).one_or_none()
    if not order:
        return fail("Order not found", 404)

    status = payload.get("status")
    notes = payload.get("notes")
    if status is None and notes is None:
        return fail("Nothing to update", 400)
    try:
        changes = update_order_admin(
            s,
            order,
            status.strip() if isinstance(status, str) else status,
            notes if isinstance(notes, str) or notes is None else str(notes),
            g.current_user,
        )
    except OrderError as e:
        return fail(str(e), e.status)
    s.commit()
    current_app.logger.info("Adoption updated (order_id=%s changes=%s)", order.order_id, sorted(changes))
    return ok(serialize_order(order, admin=True), message="Adoption updated successfully")


@bp.delete("/adoptions/<int:order_pk>")
@require_permission("adoptions.manage")
def adoptions_delete(order_pk: int):
    s = db_session()
    order = s.get(Order, order_pk)
    if not order:
        return fail("Order not found", 404)
    order_id = order.order_id
    delete_order_admin(s, order, g.current_user)
    s.commit()
    current_app.logger.info("Adoption deleted (order_id=%s)", order_id)
    return ok({"order_id": order_id}, message="Adoption deleted successfully")


@bp.post("/adoptions/cleanup-duplicates")
@require_permission("adoptions.manage")
def adoptions_cleanup_duplicates():
    s = db_session()
    payload = request_payload()
    dry_run = payload.get("dry_run", True) not in (False, "false", "0", 0)
    result = cleanup_duplicates(s, g.current_user, dry_run=dry_run)
    if not dry_run:
        s.commit()
    summary = result["summary"]
    message = (
        f"Found {summary['total_duplicates_found']} duplicate orders (dry run)"
        if dry_run
        else f"Deleted {summary['total_duplicates_deleted']} duplicate orders"
    )
    return ok(result, message=message)
