import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, request, session
from werkzeug.exceptions import HTTPException

from app.adoptrees.config import load_config
from app.adoptrees.db import init_db, teardown_db_session
from app.adoptrees.logging_config import setup_logging
from app.adoptrees.routes import bp as routes_bp
from app.adoptrees.auth import bp as auth_bp, load_current_user
from app.adoptrees.admin import bp as admin_bp
from app.adoptrees.scheduling import bp as cron_bp
from app.adoptrees.modules.accounts.routes import bp as accounts_bp
from app.adoptrees.modules.catalog.routes import bp as catalog_bp
from app.adoptrees.modules.catalog.admin import bp as catalog_admin_bp
from app.adoptrees.modules.cart.routes import bp as cart_bp
from app.adoptrees.modules.coupons.routes import bp as coupons_bp
from app.adoptrees.modules.coupons.admin import bp as coupons_admin_bp
from app.adoptrees.modules.orders.routes import bp as orders_bp
from app.adoptrees.modules.orders.admin import bp as orders_admin_bp
from app.adoptrees.modules.payments.routes import bp as payments_bp
from app.adoptrees.modules.wellwisher.routes import bp as wellwisher_bp
from app.adoptrees.modules.wellwisher.admin import bp as wellwisher_admin_bp
from app.adoptrees.utils import fail

_ERROR_MESSAGES = {
    400: "Bad request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not found",
    405: "Method not allowed",
    413: "File too large",
    429: "Too many requests",
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=1)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    setup_logging("adoptrees", app.config.get("LOG_LEVEL") or "INFO")

    from app.adoptrees.security import CSRF_EXEMPT_ENDPOINTS, ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz", "/media/")):
            return None
        endpoint = request.endpoint or ""
        if endpoint in CSRF_EXEMPT_ENDPOINTS:
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Login/registration hand out the token, so they cannot require it
            if endpoint.startswith("auth."):
                return None
            if not validate_csrf(request):
                return fail("CSRF token missing or invalid.", 400)
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("RAZORPAY_WEBHOOK_SECRET"):
            app.logger.warning("RAZORPAY_WEBHOOK_SECRET is not set; gateway webhooks will be rejected.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(accounts_bp, url_prefix="/api")
    app.register_blueprint(catalog_bp, url_prefix="/api")
    app.register_blueprint(cart_bp, url_prefix="/api")
    app.register_blueprint(coupons_bp, url_prefix="/api")
    app.register_blueprint(orders_bp, url_prefix="/api")
    app.register_blueprint(payments_bp, url_prefix="/api")
    app.register_blueprint(cron_bp, url_prefix="/api")
    app.register_blueprint(wellwisher_bp, url_prefix="/api/wellwisher")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(catalog_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(coupons_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(orders_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(wellwisher_admin_bp, url_prefix="/api/admin")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        code = e.code or 500
        if code == 403:
            missing = getattr(g, "missing_permission", None)
            if missing:
                app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if code == 413:
            return fail("File too large. Maximum upload size is 55MB.", 413)
        return fail(_ERROR_MESSAGES.get(code, e.name), code)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return fail("Internal server error", 500, request_id=rid)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")
    return app
