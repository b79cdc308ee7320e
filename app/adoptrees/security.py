from __future__ import annotations

import re
import secrets
import time

from flask import Request, current_app, session

CSRF_EXEMPT_ENDPOINTS = frozenset({"payments.razorpay_webhook"})

_rate_buckets: dict[str, list[float]] = {}
_SWEEP_INTERVAL_SECONDS = 60
_next_sweep = 0.0


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from header, form, or JSON body."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")
    if not token and req.is_json:
        json_data = req.get_json(silent=True) or {}
        if isinstance(json_data, dict):
            token = json_data.get("csrf_token")
    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))


def client_ip(req: Request) -> str:
    forwarded = (req.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = (req.headers.get("X-Real-IP") or "").strip()
    if real_ip:
        return real_ip
    return req.remote_addr or "unknown"


def check_rate_limit(bucket: str, key: str, *, limit: int, window_seconds: int) -> int | None:
    """
    Fixed-window limiter kept in process memory.
    Returns None when the call is allowed, otherwise the seconds until the window frees up.
    """
    global _next_sweep
    if not current_app.config.get("RATE_LIMIT_ENABLED", True):
        return None
    now = time.monotonic()
    if now >= _next_sweep:
        _sweep_expired(now)
        _next_sweep = now + _SWEEP_INTERVAL_SECONDS
    slot = f"{bucket}:{key}"
    # each entry is the moment that hit leaves the window
    expiries = [t for t in _rate_buckets.get(slot, ()) if t > now]
    if len(expiries) >= limit:
        _rate_buckets[slot] = expiries
        return max(1, int(expiries[0] - now) + 1)
    expiries.append(now + window_seconds)
    _rate_buckets[slot] = expiries
    return None


def _sweep_expired(now: float) -> None:
    for slot in [k for k, expiries in _rate_buckets.items() if not expiries or expiries[-1] <= now]:
        del _rate_buckets[slot]


def reset_rate_limits(bucket: str | None = None, key: str | None = None) -> None:
    global _next_sweep
    if bucket is None:
        _rate_buckets.clear()
        _next_sweep = 0.0
        return
    if key is not None:
        _rate_buckets.pop(f"{bucket}:{key}", None)
        return
    for slot in [k for k in _rate_buckets if k.startswith(f"{bucket}:")]:
        _rate_buckets.pop(slot, None)


_TAG_RE = re.compile(r"[<>]")
_JS_PROTO_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"\bon\w+\s*=", re.IGNORECASE)


def sanitize_input(value: str | None) -> str:
    """Strip markup that could be rendered as HTML by a client."""
    if not value:
        return ""
    cleaned = _TAG_RE.sub("", value)
    cleaned = _JS_PROTO_RE.sub("", cleaned)
    cleaned = _EVENT_HANDLER_RE.sub("", cleaned)
    return cleaned.strip()
