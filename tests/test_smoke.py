def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["database"] == "connected"


def test_healthz_is_plain_text(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_unknown_route_is_json_404(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert r.json == {"success": False, "error": "Not found"}


def test_cron_status_lists_both_sweeps(client):
    r = client.get("/api/cron/status")
    assert r.status_code == 200
    jobs = {j["job"]: j for j in r.json["data"]["jobs"]}
    assert jobs["growth"]["schedule"] == "0 2 * * *"
    assert jobs["quarterly"]["schedule"] == "0 3 * * *"
    assert all(j["timezone"] == "UTC" for j in jobs.values())


def test_beat_schedule_matches_tasks():
    from celery.schedules import crontab

    from app.adoptrees.scheduling import BEAT_SCHEDULE

    assert BEAT_SCHEDULE["growth-update-sweep"]["task"] == "adoptrees.growth_update_sweep"
    assert BEAT_SCHEDULE["growth-update-sweep"]["schedule"] == crontab(hour=2, minute=0)
    assert BEAT_SCHEDULE["quarterly-update-sweep"]["task"] == "adoptrees.quarterly_update_sweep"
    assert BEAT_SCHEDULE["quarterly-update-sweep"]["schedule"] == crontab(hour=3, minute=0)
