from __future__ import annotations

from flask import Blueprint, current_app, g, request
from sqlalchemy import or_

from app.adoptrees.db import db_session
from app.adoptrees.logging_config import security_logger
from app.adoptrees.models import User
from app.adoptrees.modules.accounts.service import normalize_email
from app.adoptrees.modules.wellwisher.service import (
    create_wellwisher,
    delete_wellwisher,
    serialize_wellwisher,
    update_wellwisher,
    validate_wellwisher_payload,
    wellwisher_task_counts,
)
from app.adoptrees.rbac import rate_limit, require_permission
from app.adoptrees.security import client_ip
from app.adoptrees.utils import fail, ok, pagination_meta, parse_pagination, request_payload

bp = Blueprint("wellwisher_admin", __name__)


def _get_wellwisher(s, ww_id: int) -> User | None:
    return s.query(User).filter(User.id == ww_id, User.role == "wellwisher").one_or_none()


@bp.get("/wellwishers")
@require_permission("wellwishers.manage")
def wellwishers_list():
    s = db_session()
    page, limit = parse_pagination(request.args, default_limit=10, max_limit=50)
    search = (request.args.get("search") or "").strip()

    q = s.query(User).filter(User.role == "wellwisher")
    if search:
        like = f"%{search}%"
        q = q.filter(or_(User.name.ilike(like), User.email.ilike(like), User.phone.ilike(like)))
    total = q.count()
    people = q.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    counts = wellwisher_task_counts(s, [p.id for p in people])
    return ok(
        [serialize_wellwisher(p, counts.get(p.id)) for p in people],
        pagination=pagination_meta(page, limit, total),
    )


@bp.post("/wellwishers")
@rate_limit("wellwishers.create")
@require_permission("wellwishers.manage")
def wellwishers_create():
    s = db_session()
    payload = request_payload()
    errors = validate_wellwisher_payload(payload)
    if errors:
        return fail("Validation failed", 400, details=errors)

    email = normalize_email(payload.get("email"))
    if s.query(User.id).filter(User.email == email).first():
        return fail("A user with this email already exists", 409)

    ww = create_wellwisher(s, payload, g.current_user)
    s.commit()
    security_logger.event(
        "wellwisher_created",
        ip=client_ip(request),
        admin_id=g.current_user.id,
        wellwisher_id=ww.id,
        wellwisher_email=ww.email,
    )
    return ok(serialize_wellwisher(ww), status=201, message="Well-wisher created successfully")


@bp.get("/wellwishers/<int:ww_id>")
@require_permission("wellwishers.manage")
def wellwishers_detail(ww_id: int):
    s = db_session()
    ww = _get_wellwisher(s, ww_id)
    if not ww:
        return fail("Well-wisher not found", 404)
    counts = wellwisher_task_counts(s, [ww.id])
    return ok(serialize_wellwisher(ww, counts.get(ww.id)))


@bp.put("/wellwishers/<int:ww_id>")
@require_permission("wellwishers.manage")
def wellwishers_update(ww_id: int):
    s = db_session()
    ww = _get_wellwisher(s, ww_id)
    if not ww:
        return fail("Well-wisher not found", 404)

    payload = request_payload()
    errors = validate_wellwisher_payload(payload, partial=True)
    if errors:
        return fail("Validation failed", 400, details=errors)
    if "email" in payload:
        email = normalize_email(payload.get("email"))
        if s.query(User.id).filter(User.email == email, User.id != ww.id).first():
            return fail("A user with this email already exists", 409)

    changes = update_wellwisher(s, ww, payload, g.current_user)
    s.commit()
    current_app.logger.info("Well-wisher updated (id=%s fields=%s)", ww.id, sorted(changes))
    return ok(serialize_wellwisher(ww), message="Well-wisher updated successfully")


@bp.delete("/wellwishers/<int:ww_id>")
@require_permission("wellwishers.manage")
def wellwishers_delete(ww_id: int):
    s = db_session()
    ww = _get_wellwisher(s, ww_id)
    if not ww:
        return fail("Well-wisher not found", 404)
    reassigned, unassigned = delete_wellwisher(s, ww, g.current_user)
    s.commit()
    current_app.logger.info(
        "Well-wisher deleted (id=%s reassigned=%d unassigned=%d)", ww_id, reassigned, unassigned
    )
    return ok(
        {"orders_reassigned": reassigned, "orders_unassigned": unassigned},
        message="Well-wisher deleted successfully",
    )
