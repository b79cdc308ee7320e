from app.adoptrees import security
from app.adoptrees.security import check_rate_limit

from conftest import PASSWORD


def test_login_is_rate_limited_per_ip(app, client):
    app.config["RATE_LIMIT_ENABLED"] = True
    for _ in range(10):
        r = client.post("/auth/login", json={"email": "user@example.com", "password": "wrong-password"})
        assert r.status_code == 401

    r = client.post("/auth/login", json={"email": "user@example.com", "password": PASSWORD})
    assert r.status_code == 429
    assert r.json["error"] == "Too many requests. Please try again later."
    assert int(r.headers["Retry-After"]) == r.json["retry_after"]
    assert 0 < r.json["retry_after"] <= 901

    # other clients are counted separately
    other = app.test_client()
    r = other.post(
        "/auth/login",
        json={"email": "user@example.com", "password": PASSWORD},
        environ_base={"REMOTE_ADDR": "10.0.0.2"},
    )
    assert r.status_code == 200


def test_limiter_can_be_disabled(app):
    with app.app_context():
        app.config["RATE_LIMIT_ENABLED"] = False
        assert all(check_rate_limit("auth.login", "1.2.3.4", limit=1, window_seconds=60) is None for _ in range(5))

        app.config["RATE_LIMIT_ENABLED"] = True
        assert check_rate_limit("auth.login", "1.2.3.4", limit=1, window_seconds=60) is None
        assert check_rate_limit("auth.login", "1.2.3.4", limit=1, window_seconds=60) is not None
        assert check_rate_limit("auth.login", "5.6.7.8", limit=1, window_seconds=60) is None


def test_expired_client_slots_are_dropped(app, monkeypatch):
    clock = {"now": 1000.0}
    monkeypatch.setattr(security.time, "monotonic", lambda: clock["now"])
    with app.app_context():
        app.config["RATE_LIMIT_ENABLED"] = True
        for i in range(500):
            check_rate_limit("auth.login", f"10.1.{i // 250}.{i % 250}", limit=10, window_seconds=60)
        assert len(security._rate_buckets) == 500

        clock["now"] += 61
        assert check_rate_limit("auth.login", "10.9.9.9", limit=10, window_seconds=60) is None
        assert list(security._rate_buckets) == ["auth.login:10.9.9.9"]
