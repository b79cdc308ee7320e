"""
Daily sweeps over completed planting tasks.

- growth sweep (02:00 UTC): reports tasks whose next growth update is due.
- quarterly sweep (03:00 UTC): moves tasks with no activity for 90 days to
  `updating` so the well-wisher is asked for fresh growth photos.

Both are plain functions over a SQLAlchemy session so they can run from Celery
beat, the admin endpoint or `scripts/run_sweeps.py`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from app.adoptrees.constants import QUARTERLY_UPDATE_AFTER_DAYS

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GrowthUpdateCandidate:
    order_id: str
    task_id: str
    completed_at: datetime
    next_growth_update_due: datetime
    days_since_completion: int


def _start_of_day(value: datetime | None) -> datetime:
    value = value or datetime.utcnow()
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def run_growth_update_sweep(s: "Session", today: datetime | None = None) -> list[GrowthUpdateCandidate]:
    from app.adoptrees.modules.orders.models import Order
    from app.adoptrees.modules.wellwisher.models import WellwisherTask

    day = _start_of_day(today)
    candidates: list[GrowthUpdateCandidate] = []
    try:
        rows = (
            s.query(WellwisherTask, Order.order_id)
            .join(Order, WellwisherTask.order_id == Order.id)
            .filter(
                WellwisherTask.status == "completed",
                WellwisherTask.next_growth_update_due.isnot(None),
                WellwisherTask.next_growth_update_due <= day,
                WellwisherTask.completed_at.isnot(None),
            )
            .order_by(WellwisherTask.next_growth_update_due.asc(), WellwisherTask.id.asc())
            .all()
        )
    except SQLAlchemyError:
        logger.exception("Growth update sweep failed")
        return candidates

    for task, order_id in rows:
        candidate = GrowthUpdateCandidate(
            order_id=order_id,
            task_id=task.task_id,
            completed_at=task.completed_at,
            next_growth_update_due=task.next_growth_update_due,
            days_since_completion=(day - task.completed_at).days,
        )
        candidates.append(candidate)
        logger.info(
            "Task needs growth update order_id=%s task_id=%s completed_at=%s due=%s days_since_completion=%d",
            candidate.order_id,
            candidate.task_id,
            candidate.completed_at.isoformat(),
            candidate.next_growth_update_due.isoformat(),
            candidate.days_since_completion,
        )

    logger.info("Growth update sweep completed tasks_needing_update=%d checked_at=%s", len(candidates), day.isoformat())
    return candidates


def run_quarterly_sweep(s: "Session", today: datetime | None = None) -> int:
    """Move stale completed tasks to `updating`. Returns the number of tasks moved; caller commits."""
    from app.adoptrees.modules.orders.models import Order
    from app.adoptrees.modules.wellwisher.models import WellwisherTask

    day = _start_of_day(today)
    cutoff = day - timedelta(days=QUARTERLY_UPDATE_AFTER_DAYS)
    logger.info("Quarterly sweep executing today=%s cutoff=%s", day.isoformat(), cutoff.isoformat())

    try:
        rows = (
            s.query(WellwisherTask, Order.order_id)
            .join(Order, WellwisherTask.order_id == Order.id)
            .filter(
                WellwisherTask.status == "completed",
                WellwisherTask.completed_at.isnot(None),
                WellwisherTask.completed_at <= cutoff,
            )
            .order_by(WellwisherTask.completed_at.asc(), WellwisherTask.id.asc())
            .all()
        )
    except SQLAlchemyError:
        logger.exception("Quarterly sweep failed")
        return 0

    moved = 0
    for task, order_id in rows:
        last_activity = task.last_activity_at
        if last_activity is None or last_activity > cutoff:
            continue
        try:
            # Guarded update: a well-wisher may have changed the task since it was read.
            result = s.execute(
                update(WellwisherTask)
                .where(WellwisherTask.id == task.id, WellwisherTask.status == "completed")
                .values(status="updating", updated_at=datetime.utcnow())
                .execution_options(synchronize_session="fetch")
            )
        except SQLAlchemyError:
            logger.exception("Failed to move task to updating order_id=%s task_id=%s", order_id, task.task_id)
            continue
        if result.rowcount:
            moved += 1
            logger.info(
                "Task moved to updating order_id=%s task_id=%s completed_at=%s days_since_activity=%d",
                order_id,
                task.task_id,
                task.completed_at.isoformat(),
                (day - last_activity).days,
            )

    logger.info("Quarterly sweep completed tasks_moved_to_updating=%d checked_at=%s", moved, day.isoformat())
    return moved
