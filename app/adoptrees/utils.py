from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any

from flask import jsonify, request


def ok(data: Any = None, *, status: int = 200, message: str | None = None, **extra: Any):
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return jsonify(body), status


def fail(error: str, status: int = 400, **extra: Any):
    body: dict[str, Any] = {"success": False, "error": error}
    body.update(extra)
    return jsonify(body), status


def request_payload() -> dict:
    """JSON body for API clients, form fields for multipart uploads."""
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


def iso(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def parse_int(raw: Any, default: int | None = None) -> int | None:
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def parse_float(raw: Any, default: float | None = None) -> float | None:
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    if math.isnan(value) or math.isinf(value):
        return default
    return value


def parse_date(raw: str | None) -> date | None:
    """Parse YYYY-MM-DD (or a full ISO timestamp) into a date."""
    if not raw:
        return None
    raw = str(raw).strip()
    if not raw:
        return None
    if len(raw) > 10:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    return date.fromisoformat(raw)


def parse_pagination(args, *, default_limit: int = 50, max_limit: int = 100) -> tuple[int, int]:
    page = parse_int(args.get("page"), 1) or 1
    limit = parse_int(args.get("limit"), default_limit) or default_limit
    page = max(page, 1)
    limit = max(1, min(limit, max_limit))
    return page, limit


def pagination_meta(page: int, limit: int, total: int) -> dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total_count": total,
        "limit": limit,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }
