from __future__ import annotations

from flask import Blueprint, current_app, g, request

from app.adoptrees.constants import MAX_GROWTH_IMAGE_BYTES, MAX_IMAGE_BYTES, MAX_TASK_IMAGES, TASK_STATUSES
from app.adoptrees.db import db_session
from app.adoptrees.images import StoredImage, delete_image_quietly, read_image_upload, store_image
from app.adoptrees.modules.wellwisher.service import (
    MAX_NOTES,
    TaskStateError,
    can_manage_task,
    can_view_task,
    find_task,
    list_tasks_for_wellwisher,
    record_growth_update,
    record_planting,
    serialize_growth_update,
    serialize_planting,
    serialize_task,
    update_task_status,
    validate_planting_payload,
    wellwisher_stats,
)
from app.adoptrees.rbac import require_login, require_permission
from app.adoptrees.storage import StorageError, storage_from_config
from app.adoptrees.utils import fail, ok, pagination_meta, parse_pagination, request_payload

bp = Blueprint("wellwisher", __name__)


def _read_task_images(max_bytes: int) -> tuple[list, list[str]]:
    files = [f for f in request.files.getlist("images") if f and f.filename]
    errors = []
    if not files:
        errors.append("At least one image is required.")
    if len(files) > MAX_TASK_IMAGES:
        errors.append(f"At most {MAX_TASK_IMAGES} images are allowed.")
    uploads = []
    for f in files[:MAX_TASK_IMAGES]:
        data, err = read_image_upload(f, max_bytes=max_bytes)
        if err:
            errors.append(f"Image {f.filename}: {err}")
        else:
            uploads.append((f, data))
    return uploads, errors


def _store_task_images(uploads: list, prefix: str) -> list[StoredImage]:
    storage = storage_from_config(current_app.config)
    stored: list[StoredImage] = []
    try:
        for f, data in uploads:
            stored.append(store_image(storage, data, prefix=prefix, filename=f.filename, content_type=f.mimetype))
    except StorageError:
        for img in stored:
            delete_image_quietly(storage, img.key)
        raise
    return stored


@bp.get("/tasks")
@require_permission("tasks.view")
def tasks_list():
    s = db_session()
    status = (request.args.get("status") or "pending").strip()
    if status not in TASK_STATUSES:
        return fail(f"Invalid status. Must be one of: {', '.join(TASK_STATUSES)}", 400)
    page, limit = parse_pagination(request.args, default_limit=20, max_limit=100)
    tasks, total = list_tasks_for_wellwisher(s, g.current_user, status, page=page, limit=limit)
    return ok([serialize_task(t, with_order=True) for t in tasks], pagination=pagination_meta(page, limit, total))


@bp.put("/tasks")
@require_permission("tasks.update")
def tasks_update():
    s = db_session()
    payload = request_payload()
    task_id = (payload.get("task_id") or "").strip()
    status = (payload.get("status") or "").strip()
    if not task_id or not status:
        return fail("Task ID and status are required", 400)

    task = find_task(s, task_id, (payload.get("order_id") or "").strip() or None)
    if not task:
        return fail("Task not found", 404)
    if not can_manage_task(g.current_user, task):
        return fail("Task is not assigned to you", 403)

    try:
        update_task_status(s, task, status, g.current_user)
    except TaskStateError as e:
        return fail(str(e), 400)
    s.commit()
    return ok(serialize_task(task, with_order=True), message="Task updated successfully")


@bp.post("/planting")
@require_permission("tasks.update")
def planting_submit():
    s = db_session()
    payload = request_payload()
    errors = validate_planting_payload(payload)
    uploads, image_errors = _read_task_images(MAX_IMAGE_BYTES)
    errors.extend(image_errors)
    if errors:
        return fail("Validation failed", 400, details=errors)

    task = find_task(s, payload["task_id"].strip(), payload["order_id"].strip())
    if not task:
        return fail("Task not found", 404)
    if not can_manage_task(g.current_user, task):
        return fail("Task is not assigned to you", 403)
    if task.status != "in_progress":
        return fail("Task must be in progress to submit planting details", 400)

    try:
        images = _store_task_images(uploads, f"planting/{task.task_id}")
    except StorageError as e:
        current_app.logger.error("Planting image upload failed (task_id=%s): %s", task.task_id, e)
        return fail("Image upload failed", 500)

    try:
        record_planting(s, task, payload, images, g.current_user)
    except TaskStateError as e:
        return fail(str(e), 400)
    s.commit()
    current_app.logger.info(
        "Planting recorded (task_id=%s order_id=%s images=%d)", task.task_id, task.order.order_id, len(images)
    )
    return ok(serialize_task(task, with_order=True), status=201, message="Planting details saved successfully")


@bp.get("/planting")
@require_login
def planting_detail():
    s = db_session()
    task_id = (request.args.get("task_id") or "").strip()
    order_id = (request.args.get("order_id") or "").strip()
    if not task_id or not order_id:
        return fail("Task ID and order ID are required", 400)
    task = find_task(s, task_id, order_id)
    if not task:
        return fail("Task not found", 404)
    if not can_view_task(g.current_user, task):
        return fail("Forbidden", 403)
    return ok(
        {
            "task_id": task.task_id,
            "order_id": task.order.order_id,
            "status": task.status,
            "planting_details": serialize_planting(task),
            "growth_updates": [serialize_growth_update(u) for u in task.growth_updates],
        }
    )


@bp.post("/growth-update")
@require_permission("tasks.update")
def growth_update_submit():
    s = db_session()
    payload = request_payload()
    task_id = (payload.get("task_id") or "").strip()
    order_id = (payload.get("order_id") or "").strip()
    notes = payload.get("notes") or ""
    errors = []
    if not task_id:
        errors.append("Task ID is required.")
    if not order_id:
        errors.append("Order ID is required.")
    if len(notes) > MAX_NOTES:
        errors.append(f"Notes must be at most {MAX_NOTES} characters.")
    uploads, image_errors = _read_task_images(MAX_GROWTH_IMAGE_BYTES)
    errors.extend(image_errors)
    if errors:
        return fail("Validation failed", 400, details=errors)

    task = find_task(s, task_id, order_id)
    if not task:
        return fail("Task not found", 404)
    if not can_manage_task(g.current_user, task):
        return fail("Task is not assigned to you", 403)
    if task.status not in ("completed", "updating") or task.completed_at is None:
        return fail("Task must be completed before uploading growth updates", 400)

    try:
        images = _store_task_images(uploads, f"growth/{task.task_id}")
    except StorageError as e:
        current_app.logger.error("Growth image upload failed (task_id=%s): %s", task.task_id, e)
        return fail("Image upload failed", 500)

    try:
        update = record_growth_update(s, task, notes, images, g.current_user)
    except TaskStateError as e:
        return fail(str(e), 400)
    s.commit()
    return ok(
        {"growth_update": serialize_growth_update(update), "task": serialize_task(task)},
        status=201,
        message="Growth update uploaded successfully",
    )


@bp.get("/stats")
@require_permission("tasks.view")
def stats():
    return ok(wellwisher_stats(db_session(), g.current_user))
