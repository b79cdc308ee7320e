from __future__ import annotations

from flask import Blueprint, current_app, g, request

from app.adoptrees.constants import MAX_SMALL_TREE_IMAGES
from app.adoptrees.db import db_session
from app.adoptrees.images import read_image_upload, store_image
from app.adoptrees.models import User
from app.adoptrees.modules.catalog.models import Tree
from app.adoptrees.modules.catalog.service import (
    create_tree,
    deactivate_tree,
    serialize_tree,
    update_tree,
    validate_tree_payload,
)
from app.adoptrees.rbac import require_permission
from app.adoptrees.storage import StorageError, storage_from_config
from app.adoptrees.utils import fail, ok, request_payload

bp = Blueprint("catalog_admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/trees")
@require_permission("trees.manage")
def trees_list():
    s = db_session()
    q = s.query(Tree)
    tree_type = (request.args.get("type") or "").strip()
    if tree_type:
        q = q.filter(Tree.tree_type == tree_type)
    trees = q.order_by(Tree.created_at.desc(), Tree.id.desc()).all()
    return ok([serialize_tree(t) for t in trees], count=len(trees))


@bp.post("/trees")
@require_permission("trees.manage")
def trees_create():
    s = db_session()
    u = _current_user()
    payload = request_payload()

    errors = validate_tree_payload(payload)
    image_bytes, image_error = read_image_upload(request.files.get("image"))
    if image_error:
        errors.append(f"Image: {image_error}")
    small_files = [f for f in request.files.getlist("small_images") if f and f.filename]
    if len(small_files) > MAX_SMALL_TREE_IMAGES:
        errors.append(f"At most {MAX_SMALL_TREE_IMAGES} additional images are allowed.")
    small_uploads = []
    for f in small_files[:MAX_SMALL_TREE_IMAGES]:
        data, err = read_image_upload(f)
        if err:
            errors.append(f"Additional image {f.filename}: {err}")
        else:
            small_uploads.append((f, data))
    if errors:
        return fail("Validation failed", 400, details=errors)

    storage = storage_from_config(current_app.config)
    main_file = request.files["image"]
    try:
        image = store_image(storage, image_bytes, prefix="trees", filename=main_file.filename, content_type=main_file.mimetype)
        small_images = [
            store_image(storage, data, prefix="trees/small", filename=f.filename, content_type=f.mimetype)
            for f, data in small_uploads
        ]
    except StorageError as e:
        current_app.logger.error("Tree image upload failed: %s", e)
        return fail("Image upload failed", 500)

    tree = create_tree(s, payload, u, image, small_images)
    s.commit()
    return ok(serialize_tree(tree), status=201, message="Tree created successfully")


@bp.put("/trees/<int:tree_id>")
@require_permission("trees.manage")
def trees_update(tree_id: int):
    s = db_session()
    u = _current_user()
    tree = s.get(Tree, tree_id)
    if not tree:
        return fail("Tree not found", 404)

    payload = request_payload()
    errors = validate_tree_payload(payload, partial=True)
    upload = request.files.get("image")
    image_bytes = None
    if upload is not None and upload.filename:
        image_bytes, image_error = read_image_upload(upload)
        if image_error:
            errors.append(f"Image: {image_error}")
    if errors:
        return fail("Validation failed", 400, details=errors)

    storage = storage_from_config(current_app.config)
    image = None
    if image_bytes is not None:
        try:
            image = store_image(storage, image_bytes, prefix="trees", filename=upload.filename, content_type=upload.mimetype)
        except StorageError as e:
            current_app.logger.error("Tree image upload failed (tree_id=%s): %s", tree_id, e)
            return fail("Image upload failed", 500)

    update_tree(s, tree, payload, u, image=image, storage=storage)
    s.commit()
    return ok(serialize_tree(tree), message="Tree updated successfully")


@bp.delete("/trees/<int:tree_id>")
@require_permission("trees.manage")
def trees_delete(tree_id: int):
    s = db_session()
    u = _current_user()
    tree = s.get(Tree, tree_id)
    if not tree:
        return fail("Tree not found", 404)
    deactivate_tree(s, tree, u, storage_from_config(current_app.config))
    s.commit()
    return ok(message="Tree deleted successfully")
