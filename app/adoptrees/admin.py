import json
from datetime import datetime, time, timedelta

from flask import Blueprint, current_app, g, request
from sqlalchemy import func

from app.adoptrees.audit import record_event
from app.adoptrees.db import db_session
from app.adoptrees.models import AuditEvent, User
from app.adoptrees.modules.accounts.service import serialize_user
from app.adoptrees.modules.catalog.models import Tree
from app.adoptrees.modules.orders.models import Order
from app.adoptrees.modules.wellwisher.service import delete_wellwisher
from app.adoptrees.rbac import require_permission
from app.adoptrees.scheduling import JOBS, run_job
from app.adoptrees.utils import fail, iso, ok, parse_date, request_payload

bp = Blueprint("admin", __name__)


@bp.get("/overview")
@require_permission("admin.view")
def overview():
    s = db_session()
    users_by_type = dict(
        s.query(User.user_type, func.count(User.id)).filter(User.role == "user").group_by(User.user_type).all()
    )
    orders_by_status = dict(s.query(Order.status, func.count(Order.id)).group_by(Order.status).all())
    revenue = s.query(func.coalesce(func.sum(Order.final_amount), 0.0)).filter(Order.payment_status == "paid").scalar()
    return ok(
        {
            "trees": {
                "total": s.query(func.count(Tree.id)).scalar(),
                "active": s.query(func.count(Tree.id)).filter(Tree.is_active.is_(True)).scalar(),
            },
            "users": {
                "individual": users_by_type.get("individual", 0),
                "company": users_by_type.get("company", 0),
            },
            "wellwishers": s.query(func.count(User.id)).filter(User.role == "wellwisher").scalar(),
            "orders": {
                "total": sum(orders_by_status.values()),
                "by_status": orders_by_status,
                "paid": s.query(func.count(Order.id)).filter(Order.payment_status == "paid").scalar(),
            },
            "revenue": round(float(revenue or 0), 2),
        }
    )


@bp.get("/users")
@require_permission("users.manage")
def users_list():
    s = db_session()
    q = s.query(User).filter(User.role == "user")
    user_type = (request.args.get("type") or "").strip()
    if user_type:
        q = q.filter(User.user_type == user_type)
    users = q.order_by(User.created_at.desc(), User.id.desc()).all()
    return ok([serialize_user(u) for u in users], count=len(users))


@bp.get("/users/<int:user_id>")
@require_permission("users.manage")
def users_detail(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        return fail("User not found", 404)
    order_count = s.query(func.count(Order.id)).filter(Order.user_id == user.id).scalar()
    data = serialize_user(user)
    data["order_count"] = order_count
    return ok(data)


@bp.delete("/users/<int:user_id>")
@require_permission("users.manage")
def users_delete(user_id: int):
    s = db_session()
    admin = g.current_user
    user = s.get(User, user_id)
    if not user:
        return fail("User not found", 404)
    if user.role == "admin":
        return fail("Admin accounts cannot be deleted", 403)

    if user.role == "wellwisher":
        delete_wellwisher(s, user, admin)
    else:
        record_event(
            s,
            actor=admin,
            action="user.delete",
            entity_type="User",
            entity_id=str(user.id),
            metadata={"email": user.email, "user_type": user.user_type},
        )
        s.delete(user)
    s.commit()
    current_app.logger.info("User deleted (id=%s by admin_id=%s)", user_id, admin.id)
    return ok(message="User deleted successfully")


@bp.get("/audit")
@require_permission("admin.view")
def audit_list():
    """
    Last 200 audit events with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD, inclusive)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    try:
        date_from = parse_date(request.args.get("date_from"))
        date_to = parse_date(request.args.get("date_to"))
    except ValueError:
        return fail("Dates must be YYYY-MM-DD", 400)

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return ok(
        [
            {
                "id": e.id,
                "created_at": iso(e.created_at),
                "request_id": e.request_id,
                "actor_user_id": e.actor_user_id,
                "actor_user_email": e.actor_user_email,
                "action": e.action,
                "entity_type": e.entity_type,
                "entity_id": e.entity_id,
                "reason": e.reason,
                "metadata": json.loads(e.metadata_json) if e.metadata_json else None,
                "client_ip": e.client_ip,
            }
            for e in events
        ],
        count=len(events),
    )


@bp.post("/cron/run")
@require_permission("cron.run")
def cron_run():
    s = db_session()
    job = (request_payload().get("job") or "").strip()
    if job not in JOBS:
        return fail(f"Invalid job. Must be one of: {', '.join(JOBS)}", 400)
    result = run_job(s, job)
    record_event(s, actor=g.current_user, action="cron.run", entity_type="Job", entity_id=job, metadata=result)
    s.commit()
    current_app.logger.info("Cron job run manually (job=%s admin_id=%s)", job, g.current_user.id)
    return ok(result, message=f"{job} sweep completed")
