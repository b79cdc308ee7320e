"""
Celery wiring for the daily sweeps.

Worker + beat:
    celery -A app.celery_worker.celery worker --beat --loglevel=INFO
"""
from __future__ import annotations

import logging
from typing import Any

from celery import Celery, shared_task
from flask import Flask, current_app

from app.adoptrees.db import session_scope
from app.adoptrees.scheduling import BEAT_SCHEDULE, run_job

logger = logging.getLogger(__name__)


def init_celery(flask_app: Flask) -> Celery:
    celery = Celery(
        flask_app.import_name,
        broker=flask_app.config["CELERY_BROKER_URL"],
        backend=flask_app.config["CELERY_RESULT_BACKEND"],
    )
    celery.conf.update(
        beat_schedule=BEAT_SCHEDULE,
        timezone="UTC",
        enable_utc=True,
        broker_connection_retry_on_startup=True,
    )

    class ContextTask(celery.Task):
        def __call__(self, *args: Any, **kwargs: Any):
            with flask_app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = ContextTask
    celery.set_default()
    return celery


def _run(job: str) -> dict[str, Any]:
    try:
        with session_scope(current_app) as s:
            return run_job(s, job)
    except Exception:
        # the next scheduled run retries
        logger.exception("Scheduled job failed job=%s", job)
        return {"job": job, "error": "failed"}


@shared_task(name="adoptrees.growth_update_sweep")
def growth_update_sweep() -> dict[str, Any]:
    return _run("growth")


@shared_task(name="adoptrees.quarterly_update_sweep")
def quarterly_update_sweep() -> dict[str, Any]:
    return _run("quarterly")
