import mimetypes

from flask import Blueprint, abort, current_app, send_file

from app.adoptrees.db import ping
from app.adoptrees.storage import LocalStorage, StorageError, storage_from_config

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return {"success": True, "service": "adoptrees", "docs": "/health"}


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON with database connectivity."""
    try:
        db_ok = ping(current_app)
    except Exception as e:
        current_app.logger.error("Health check DB ping failed: %s", e)
        db_ok = False
    body = {
        "ok": db_ok,
        "database": "connected" if db_ok else "unavailable",
        "storage": current_app.config.get("STORAGE_BACKEND") or "local",
    }
    return body, 200 if db_ok else 503


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container health checks. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/media/<path:key>")
def media(key: str):
    """Serves locally stored uploads; S3 deployments link to the bucket directly."""
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        abort(404)
    try:
        fh = storage.open(key)
    except StorageError:
        abort(404)
    mimetype = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return send_file(fh, mimetype=mimetype, max_age=3600)
