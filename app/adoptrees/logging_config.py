from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from flask import g, has_request_context, request


def add_request_context(logger: logging.Logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Add Flask request context to structured log entries."""
    if has_request_context():
        event_dict["request_id"] = getattr(g, "request_id", None)
        user = getattr(g, "current_user", None)
        event_dict["user_id"] = user.id if user is not None else None
        event_dict["remote_addr"] = request.remote_addr
        event_dict["method"] = request.method
        event_dict["path"] = request.path
    return event_dict


def setup_logging(app_name: str = "adoptrees", log_level: str = "INFO") -> None:
    """
    Configure structlog for payment/security event trails and the stdlib root logger
    used by `current_app.logger` and module loggers.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_request_context,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s", stream=sys.stdout, level=level)
    logging.getLogger(app_name).setLevel(level)

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return structlog.get_logger(name or __name__)


class SecurityLogger:
    """Dedicated security event logger"""

    def __init__(self) -> None:
        self.logger = get_logger("security")

    def event(self, name: str, **details: Any) -> None:
        self.logger.info(name, event_type="security", **details)

    def log_authentication_attempt(self, email: str, success: bool, ip_address: str | None, portal: str | None = None) -> None:
        self.logger.info(
            "Authentication attempt",
            email=email,
            success=success,
            ip_address=ip_address,
            portal=portal,
            event_type="auth_attempt",
        )

    def log_unauthorized_access(self, required: str, ip_address: str | None, user_id: int | None = None) -> None:
        self.logger.warning(
            "Unauthorized access attempt",
            required=required,
            ip_address=ip_address,
            user_id=user_id,
            event_type="unauthorized_access",
        )

    def log_rate_limited(self, bucket: str, ip_address: str | None) -> None:
        self.logger.warning("Rate limit exceeded", bucket=bucket, ip_address=ip_address, event_type="rate_limited")


class PaymentLogger:
    """Payment trail: gateway orders, verification, webhooks"""

    def __init__(self) -> None:
        self.logger = get_logger("payment")

    def event(self, name: str, **details: Any) -> None:
        self.logger.info(name, event_type="payment", **details)

    def error(self, name: str, **details: Any) -> None:
        self.logger.error(name, event_type="payment", **details)


# Global logger instances
security_logger = SecurityLogger()
payment_logger = PaymentLogger()
