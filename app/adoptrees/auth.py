from __future__ import annotations

import uuid

from flask import Blueprint, current_app, g, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from app.adoptrees.audit import record_event
from app.adoptrees.db import db_session
from app.adoptrees.logging_config import security_logger
from app.adoptrees.models import User
from app.adoptrees.modules.accounts.service import (
    normalize_email,
    register_user,
    session_user,
    validate_registration_payload,
)
from app.adoptrees.rbac import rate_limit
from app.adoptrees.security import client_ip, ensure_csrf_token
from app.adoptrees.utils import fail, ok, request_payload

bp = Blueprint("auth", __name__)

# Hash checked when the email is unknown so both paths cost the same.
_DUMMY_HASH = generate_password_hash("adoptrees-timing-guard")

PORTAL_ROLES = {
    "user": ("user",),
    "admin": ("admin",),
    "wellwisher": ("wellwisher",),
}


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


@bp.post("/register")
@rate_limit("auth.register")
def register():
    payload = request_payload()
    errors = validate_registration_payload(payload)
    if errors:
        return fail("Validation failed", 400, details=errors)

    s = db_session()
    email = normalize_email(payload.get("email"))
    if s.query(User.id).filter(User.email == email).first():
        return fail("User already exists", 409)

    user = register_user(s, payload)
    s.commit()
    current_app.logger.info("User registered (user_id=%s type=%s)", user.id, user.user_type)
    return ok({"id": user.id, "email": user.email, "public_id": user.public_id}, status=201, message="User created successfully")


@bp.post("/login")
@rate_limit("auth.login")
def login():
    payload = request_payload()
    email = normalize_email(payload.get("email"))
    password = payload.get("password") or ""
    portal = (payload.get("portal") or "").strip().lower() or None
    ip = client_ip(request)

    if not email or not password:
        return fail("Email and password are required", 400)
    if portal and portal not in PORTAL_ROLES:
        return fail("Unknown login portal", 400)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        password_ok = check_password_hash(user.password_hash if user else _DUMMY_HASH, password)
        if not user or not user.is_active or not password_ok:
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email, "portal": portal},
            )
            s.commit()
            security_logger.log_authentication_attempt(email, False, ip, portal)
            return fail("Invalid credentials", 401)

        if portal and user.role not in PORTAL_ROLES[portal]:
            record_event(
                s,
                actor=user,
                action="auth.login_wrong_portal",
                entity_type="User",
                entity_id=str(user.id),
                metadata={"portal": portal, "role": user.role},
            )
            s.commit()
            security_logger.log_authentication_attempt(email, False, ip, portal)
            return fail("This account cannot sign in here", 403)

        session.clear()
        session.permanent = True
        session["user_id"] = user.id
        csrf_token = ensure_csrf_token()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        security_logger.log_authentication_attempt(email, True, ip, portal)
        return ok({"user": session_user(user), "csrf_token": csrf_token})
    except Exception:
        current_app.logger.exception("Login crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return ok(message="Logged out")


@bp.get("/session")
def current_session():
    user = getattr(g, "current_user", None)
    if not user:
        return fail("Unauthorized", 401)
    return ok({"user": session_user(user), "csrf_token": ensure_csrf_token()})


@bp.get("/csrf")
def csrf():
    return ok({"csrf_token": ensure_csrf_token()})


@bp.post("/check-user")
def check_user():
    email = normalize_email(request_payload().get("email"))
    if not email:
        return fail("Email is required", 400)
    s = db_session()
    if not s.query(User.id).filter(User.email == email).first():
        return fail("User not found", 404)
    return ok({"exists": True})
