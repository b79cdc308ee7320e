from __future__ import annotations

from flask import Blueprint, current_app, g, request

from app.adoptrees.db import db_session
from app.adoptrees.images import delete_image_quietly, read_image_upload, store_image
from app.adoptrees.models import User
from app.adoptrees.modules.accounts.service import (
    clear_profile_picture,
    ensure_public_id,
    public_profile_url,
    serialize_user,
    set_profile_picture,
    update_profile,
    validate_profile_payload,
)
from app.adoptrees.rbac import require_login
from app.adoptrees.storage import StorageError, storage_from_config
from app.adoptrees.utils import fail, ok, request_payload

bp = Blueprint("accounts", __name__)


def _self_only(user_id: int) -> User | None:
    u = g.current_user
    return u if u.id == user_id else None


@bp.get("/users/<int:user_id>")
@require_login
def user_detail(user_id: int):
    user = _self_only(user_id)
    if user is None:
        return fail("Forbidden", 403)
    return ok(serialize_user(user))


@bp.put("/users/<int:user_id>")
@require_login
def user_update(user_id: int):
    user = _self_only(user_id)
    if user is None:
        return fail("Forbidden", 403)
    s = db_session()
    payload = request_payload()
    errors = validate_profile_payload(s, user, payload)
    if errors:
        return fail("Validation failed", 400, details=errors)
    changes = update_profile(s, user, payload)
    s.commit()
    return ok(serialize_user(user), message="Profile updated successfully" if changes else "No changes")


@bp.post("/users/profile-picture")
@require_login
def profile_picture_upload():
    s = db_session()
    user = g.current_user
    upload = request.files.get("image")
    data, error = read_image_upload(upload)
    if error:
        return fail(error, 400)

    storage = storage_from_config(current_app.config)
    try:
        image = store_image(storage, data, prefix=f"profiles/{user.id}", filename=upload.filename, content_type=upload.mimetype)
    except StorageError as e:
        current_app.logger.error("Profile picture upload failed (user_id=%s): %s", user.id, e)
        return fail("Image upload failed", 500)
    old_key = set_profile_picture(s, user, image)
    s.commit()
    delete_image_quietly(storage, old_key)
    return ok({"image": user.image_url}, message="Profile picture updated successfully")


@bp.delete("/users/profile-picture")
@require_login
def profile_picture_delete():
    s = db_session()
    user = g.current_user
    if not user.image_key and not user.image_url:
        return fail("No profile picture to remove", 400)
    old_key = clear_profile_picture(s, user)
    s.commit()
    delete_image_quietly(storage_from_config(current_app.config), old_key)
    return ok(message="Profile picture removed successfully")


@bp.get("/users/public-id")
@require_login
def public_id():
    s = db_session()
    user = g.current_user
    had_id = bool(user.public_id)
    pid = ensure_public_id(s, user)
    if not had_id:
        s.commit()
    return ok({"public_id": pid, "profile_url": public_profile_url(pid), "qr_code": user.qr_code})
