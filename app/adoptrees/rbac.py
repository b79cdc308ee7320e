from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g, request

from app.adoptrees.constants import RATE_LIMITS, ROLE_PERMISSIONS
from app.adoptrees.logging_config import security_logger
from app.adoptrees.models import User
from app.adoptrees.security import check_rate_limit, client_ip
from app.adoptrees.utils import fail


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    return permission_key in ROLE_PERMISSIONS.get(user.role, frozenset())


def _current() -> User | None:
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        return None
    return user


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if _current() is None:
            return fail("Unauthorized", 401)
        return fn(*args, **kwargs)

    return wrapped


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = _current()
            if user is None:
                return fail("Unauthorized", 401)
            if user.role not in roles:
                security_logger.log_unauthorized_access(f"role:{'|'.join(roles)}", client_ip(request), user.id)
                return fail("Forbidden", 403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = _current()
            # Unauthenticated → 401 so clients can send the user to the right login portal.
            if user is None:
                return fail("Unauthorized", 401)
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                security_logger.log_unauthorized_access(permission_key, client_ip(request), user.id)
                return fail("Forbidden", 403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def rate_limit(bucket: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    limit, window = RATE_LIMITS[bucket]

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            ip = client_ip(request)
            retry_after = check_rate_limit(bucket, ip, limit=limit, window_seconds=window)
            if retry_after is not None:
                security_logger.log_rate_limited(bucket, ip)
                resp, status = fail("Too many requests. Please try again later.", 429, retry_after=retry_after)
                resp.headers["Retry-After"] = str(retry_after)
                return resp, status
            return fn(*args, **kwargs)

        return wrapped

    return decorator
