from datetime import datetime, timedelta

import pytest

from app.adoptrees.db import session_scope
from app.adoptrees.modules.wellwisher.models import GrowthUpdate, WellwisherTask
from app.adoptrees.modules.wellwisher.sweeps import run_growth_update_sweep, run_quarterly_sweep
from app.adoptrees.scheduling import run_job

from conftest import place_order

TODAY = datetime(2026, 6, 1, 2, 0)


def _complete(app, task_id: str, completed_at: datetime, *, due: datetime | None = None, status: str = "completed"):
    with session_scope(app) as s:
        t = s.query(WellwisherTask).filter(WellwisherTask.task_id == task_id).one()
        t.status = status
        t.planted_at = completed_at
        t.completed_at = completed_at
        t.next_growth_update_due = due or completed_at + timedelta(days=30)


def test_growth_sweep_reports_due_tasks_only(app):
    due_order = place_order(app)
    later_order = place_order(app)
    _complete(app, f"{due_order['order_id']}-0", TODAY.replace(hour=0) - timedelta(days=31))
    _complete(app, f"{later_order['order_id']}-0", TODAY - timedelta(days=5))

    with session_scope(app) as s:
        candidates = run_growth_update_sweep(s, today=TODAY)
    assert [c.order_id for c in candidates] == [due_order["order_id"]]
    assert candidates[0].task_id == f"{due_order['order_id']}-0"
    assert candidates[0].days_since_completion == 31


def test_growth_sweep_due_today_counts(app):
    order = place_order(app)
    _complete(app, f"{order['order_id']}-0", TODAY - timedelta(days=30), due=TODAY.replace(hour=0))
    with session_scope(app) as s:
        assert len(run_growth_update_sweep(s, today=TODAY)) == 1


def test_quarterly_sweep_moves_stale_tasks(app):
    stale = place_order(app)
    fresh = place_order(app)
    refreshed = place_order(app)
    _complete(app, f"{stale['order_id']}-0", TODAY - timedelta(days=120))
    _complete(app, f"{fresh['order_id']}-0", TODAY - timedelta(days=30))
    _complete(app, f"{refreshed['order_id']}-0", TODAY - timedelta(days=120))
    with session_scope(app) as s:
        t = s.query(WellwisherTask).filter(WellwisherTask.task_id == f"{refreshed['order_id']}-0").one()
        t.growth_updates.append(
            GrowthUpdate(update_id="gu-1", uploaded_at=TODAY - timedelta(days=10), days_since_planting=110)
        )

    with session_scope(app) as s:
        assert run_quarterly_sweep(s, today=TODAY) == 1
    with session_scope(app) as s:
        status = dict(s.query(WellwisherTask.task_id, WellwisherTask.status).all())
    assert status[f"{stale['order_id']}-0"] == "updating"
    assert status[f"{fresh['order_id']}-0"] == "completed"
    assert status[f"{refreshed['order_id']}-0"] == "completed"

    # already moved tasks are not counted again
    with session_scope(app) as s:
        assert run_quarterly_sweep(s, today=TODAY) == 0


def test_quarterly_sweep_ignores_tasks_not_completed(app):
    order = place_order(app)
    _complete(app, f"{order['order_id']}-0", TODAY - timedelta(days=200), status="in_progress")
    with session_scope(app) as s:
        assert run_quarterly_sweep(s, today=TODAY) == 0


def test_run_job_summaries(app):
    order = place_order(app)
    _complete(app, f"{order['order_id']}-0", TODAY - timedelta(days=100))
    with session_scope(app) as s:
        growth = run_job(s, "growth", today=TODAY)
        assert growth["tasks_needing_update"] == 1
        assert growth["candidates"][0]["order_id"] == order["order_id"]
        assert isinstance(growth["candidates"][0]["completed_at"], str)

        quarterly = run_job(s, "quarterly", today=TODAY)
        assert quarterly["tasks_moved_to_updating"] == 1


def test_run_job_unknown(app):
    with session_scope(app) as s:
        with pytest.raises(ValueError):
            run_job(s, "weekly")


def test_celery_tasks_run_inside_app_context(app):
    from app.adoptrees.tasks import growth_update_sweep, init_celery, quarterly_update_sweep

    app.config["CELERY_BROKER_URL"] = "memory://"
    app.config["CELERY_RESULT_BACKEND"] = "cache+memory://"
    celery = init_celery(app)
    celery.conf.task_always_eager = True
    assert celery.conf.beat_schedule["quarterly-update-sweep"]["task"] == "adoptrees.quarterly_update_sweep"
    assert growth_update_sweep.name == "adoptrees.growth_update_sweep"
    result = quarterly_update_sweep.apply().get()
    assert result["job"] == "quarterly"
    assert result["tasks_moved_to_updating"] == 0
