"""
Scheduled jobs: which sweeps exist, when Celery beat fires them, and a
single entry point (`run_job`) shared by beat, the admin endpoint and
`scripts/run_sweeps.py`.
"""
from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import TYPE_CHECKING, Any

from celery.schedules import crontab
from flask import Blueprint

from app.adoptrees.modules.wellwisher.sweeps import run_growth_update_sweep, run_quarterly_sweep
from app.adoptrees.utils import iso, ok

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

bp = Blueprint("cron", __name__)

JOBS = ("growth", "quarterly")

BEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    "growth-update-sweep": {
        "task": "adoptrees.growth_update_sweep",
        # Daily at 2 AM UTC
        "schedule": crontab(hour=2, minute=0),
    },
    "quarterly-update-sweep": {
        "task": "adoptrees.quarterly_update_sweep",
        # Daily at 3 AM UTC
        "schedule": crontab(hour=3, minute=0),
    },
}


def run_job(s: "Session", job: str, *, today: datetime | None = None) -> dict[str, Any]:
    """Run one sweep and return a JSON-ready summary. Raises ValueError for an unknown job."""
    started = datetime.utcnow()
    if job == "growth":
        candidates = run_growth_update_sweep(s, today=today)
        return {
            "job": job,
            "started_at": iso(started),
            "tasks_needing_update": len(candidates),
            "candidates": [
                {k: iso(v) if isinstance(v, datetime) else v for k, v in asdict(c).items()} for c in candidates
            ],
        }
    if job == "quarterly":
        moved = run_quarterly_sweep(s, today=today)
        return {"job": job, "started_at": iso(started), "tasks_moved_to_updating": moved}
    raise ValueError(f"Unknown job {job!r}. Must be one of: {', '.join(JOBS)}")


def schedule_summary() -> list[dict[str, str]]:
    return [
        {"name": "growth-update-sweep", "job": "growth", "schedule": "0 2 * * *", "timezone": "UTC"},
        {"name": "quarterly-update-sweep", "job": "quarterly", "schedule": "0 3 * * *", "timezone": "UTC"},
    ]


@bp.get("/cron/status")
def cron_status():
    return ok({"jobs": schedule_summary(), "server_time": iso(datetime.utcnow())})
