from __future__ import annotations

import logging
import re
import secrets
import string
import time
from datetime import date, datetime
from typing import TYPE_CHECKING

from flask import current_app
from werkzeug.security import generate_password_hash

from app.adoptrees.audit import record_event
from app.adoptrees.constants import USER_TYPES
from app.adoptrees.images import StoredImage, qr_data_url
from app.adoptrees.security import sanitize_input
from app.adoptrees.utils import iso, parse_date

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.adoptrees.models import User

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[+]?[(]?[0-9]{1,4}[)]?[-\s.]?[(]?[0-9]{1,4}[)]?[-\s.]?[0-9]{1,9}$")
SPECIAL_CHARS = "@$!%*?&"

_BASE36 = string.digits + string.ascii_lowercase


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, rem = divmod(n, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def normalize_email(raw: str | None) -> str:
    return (raw or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(email) and len(email) <= 320 and bool(EMAIL_RE.match(email))


def password_errors(password: str, *, min_len: int = 8, max_len: int = 100, require_special: bool = True) -> list[str]:
    errors = []
    if len(password) < min_len:
        errors.append(f"Password must be at least {min_len} characters long.")
    if len(password) > max_len:
        errors.append(f"Password must be at most {max_len} characters long.")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter.")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter.")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number.")
    if require_special and not any(c in SPECIAL_CHARS for c in password):
        errors.append(f"Password must contain at least one special character ({SPECIAL_CHARS}).")
    return errors


def validate_registration_payload(payload: dict) -> list[str]:
    """Validate a customer sign-up. Returns list of errors."""
    errors = []
    user_type = (payload.get("user_type") or "").strip()
    if user_type not in USER_TYPES:
        errors.append("User type must be individual or company.")

    if user_type == "individual":
        name = (payload.get("name") or "").strip()
        if len(name) < 2:
            errors.append("Name must be at least 2 characters.")
    elif user_type == "company":
        company_name = (payload.get("company_name") or "").strip()
        if len(company_name) < 2:
            errors.append("Company name must be at least 2 characters.")

    if not is_valid_email(normalize_email(payload.get("email"))):
        errors.append("Invalid email address.")

    phone = (payload.get("phone") or "").strip()
    if phone and not PHONE_RE.match(phone):
        errors.append("Invalid phone number.")

    errors.extend(password_errors(payload.get("password") or ""))
    return errors


def generate_public_id(s: "Session") -> str:
    """6 random base36 chars + last 4 chars of the base36 millisecond clock, unique across users."""
    from app.adoptrees.models import User

    for _ in range(10):
        rand = "".join(secrets.choice(_BASE36) for _ in range(6))
        stamp = _base36(int(time.time() * 1000))[-4:]
        candidate = f"{rand}{stamp}".lower()
        exists = s.query(User.id).filter(User.public_id == candidate).first()
        if not exists:
            return candidate
    raise RuntimeError("Could not allocate a unique public id")


def public_profile_url(public_id: str) -> str:
    base = (current_app.config.get("APP_URL") or "").rstrip("/")
    return f"{base}/u/{public_id}"


def refresh_qr_code(user: "User") -> None:
    if not user.public_id:
        return
    try:
        user.qr_code = qr_data_url(public_profile_url(user.public_id))
    except Exception as e:
        # A missing QR code never blocks sign-up; it is regenerated on demand.
        logger.warning("QR code generation failed (user_id=%s): %s", user.id, e)


def ensure_public_id(s: "Session", user: "User") -> str:
    if not user.public_id:
        user.public_id = generate_public_id(s)
        user.updated_at = datetime.utcnow()
        refresh_qr_code(user)
    return user.public_id


def register_user(s: "Session", payload: dict) -> "User":
    """Create a customer account (role is always `user`). Caller checks email uniqueness."""
    from app.adoptrees.models import User

    now = datetime.utcnow()
    user_type = payload["user_type"].strip()
    user = User(
        email=normalize_email(payload.get("email")),
        password_hash=generate_password_hash(payload["password"]),
        user_type=user_type,
        role="user",
        name=sanitize_input(payload.get("name")) or None if user_type == "individual" else None,
        company_name=sanitize_input(payload.get("company_name")) or None if user_type == "company" else None,
        phone=(payload.get("phone") or "").strip() or None,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    user.public_id = generate_public_id(s)
    s.add(user)
    s.flush()
    refresh_qr_code(user)

    record_event(
        s,
        actor=user,
        action="auth.register",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email, "user_type": user.user_type},
    )
    return user


def session_user(user: "User") -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.display_name,
        "role": user.role,
        "user_type": user.user_type,
        "image": user.image_url,
    }


def serialize_user(user: "User") -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "company_name": user.company_name,
        "phone": user.phone,
        "address": user.address,
        "gst_number": user.gst_number,
        "date_of_birth": iso(user.date_of_birth),
        "user_type": user.user_type,
        "role": user.role,
        "public_id": user.public_id,
        "qr_code": user.qr_code,
        "image": user.image_url,
        "is_active": user.is_active,
        "created_at": iso(user.created_at),
        "updated_at": iso(user.updated_at),
    }


def validate_profile_payload(s: "Session", user: "User", payload: dict) -> list[str]:
    from app.adoptrees.models import User

    errors = []
    if "email" in payload:
        email = normalize_email(payload.get("email"))
        if not is_valid_email(email):
            errors.append("Invalid email address.")
        elif email != user.email:
            taken = s.query(User.id).filter(User.email == email, User.id != user.id).first()
            if taken:
                errors.append("Email already in use.")

    if user.user_type == "individual" and "name" in payload:
        if len((payload.get("name") or "").strip()) < 2:
            errors.append("Name must be at least 2 characters.")
    if user.user_type == "company" and "company_name" in payload:
        if len((payload.get("company_name") or "").strip()) < 2:
            errors.append("Company name must be at least 2 characters.")

    phone = (payload.get("phone") or "").strip()
    if phone and not PHONE_RE.match(phone):
        errors.append("Invalid phone number.")

    if payload.get("date_of_birth"):
        try:
            dob = parse_date(payload.get("date_of_birth"))
        except ValueError:
            errors.append("Invalid date of birth.")
        else:
            today = date.today()
            if dob and dob > today:
                errors.append("Date of birth cannot be in the future.")
            elif dob and (today.year - dob.year) > 120:
                errors.append("Date of birth is too far in the past.")
    return errors


def update_profile(s: "Session", user: "User", payload: dict) -> dict:
    """Apply allowed profile changes. Returns the change set recorded in the audit log."""
    changes: dict[str, dict] = {}

    def _set(field: str, new) -> None:
        old = getattr(user, field)
        if new != old:
            changes[field] = {"old": str(old) if old is not None else None, "new": str(new) if new is not None else None}
            setattr(user, field, new)

    if user.user_type == "individual" and "name" in payload:
        _set("name", sanitize_input(payload.get("name")) or None)
    if user.user_type == "company":
        if "company_name" in payload:
            _set("company_name", sanitize_input(payload.get("company_name")) or None)
        if "gst_number" in payload:
            _set("gst_number", (payload.get("gst_number") or "").strip().upper() or None)
    if "email" in payload:
        _set("email", normalize_email(payload.get("email")))
    if "phone" in payload:
        _set("phone", (payload.get("phone") or "").strip() or None)
    if "address" in payload:
        _set("address", sanitize_input(payload.get("address")) or None)
    if "date_of_birth" in payload:
        dob = parse_date(payload.get("date_of_birth"))
        if dob != user.date_of_birth:
            _set("date_of_birth", dob)
            user.date_of_birth_last_updated = datetime.utcnow()

    if changes:
        user.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="user.profile_update",
            entity_type="User",
            entity_id=str(user.id),
            metadata={"changes": changes},
        )
    return changes


def set_profile_picture(s: "Session", user: "User", image: StoredImage) -> str | None:
    """Point the user at a new image. Returns the replaced key; the caller deletes it after commit."""
    old_key = user.image_key
    user.image_url = image.url
    user.image_key = image.key
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="user.profile_picture", entity_type="User", entity_id=str(user.id))
    return old_key if old_key and old_key != image.key else None


def clear_profile_picture(s: "Session", user: "User") -> str | None:
    old_key = user.image_key
    user.image_url = None
    user.image_key = None
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="user.profile_picture_removed", entity_type="User", entity_id=str(user.id))
    return old_key
