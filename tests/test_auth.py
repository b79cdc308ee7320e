from app.adoptrees.db import session_scope
from app.adoptrees.models import AuditEvent, User

from conftest import PASSWORD, login


def _register(client, **overrides):
    body = {
        "user_type": "individual",
        "name": "Priya Sharma",
        "email": "priya@example.com",
        "password": "Str0ng!pass",
        "phone": "9876543210",
    }
    body.update(overrides)
    return client.post("/auth/register", json=body)


def test_register_creates_user_with_public_id_and_qr(app, client):
    r = _register(client)
    assert r.status_code == 201, r.json
    assert r.json["success"] is True
    public_id = r.json["data"]["public_id"]
    assert public_id and len(public_id) == 10

    with session_scope(app) as s:
        u = s.query(User).filter(User.email == "priya@example.com").one()
        assert u.role == "user"
        assert u.qr_code.startswith("data:image/png;base64,")
        assert s.query(AuditEvent).filter(AuditEvent.action == "auth.register").count() == 1


def test_register_duplicate_email_conflicts(client):
    assert _register(client).status_code == 201
    r = _register(client, email="PRIYA@example.com")
    assert r.status_code == 409
    assert r.json["error"] == "User already exists"


def test_register_validation_lists_every_problem(client):
    r = _register(client, name="P", email="not-an-email", password="short")
    assert r.status_code == 400
    assert r.json["error"] == "Validation failed"
    details = " ".join(r.json["details"])
    assert "Name must be at least 2 characters" in details
    assert "Invalid email address" in details
    assert "at least 8 characters" in details


def test_company_registration_requires_company_name(client):
    r = _register(client, user_type="company", name=None)
    assert r.status_code == 400
    assert any("Company name" in d for d in r.json["details"])


def test_login_returns_csrf_token_and_session(app):
    c = login(app, "user@example.com")
    r = c.get("/auth/session")
    assert r.status_code == 200
    assert r.json["data"]["user"]["email"] == "user@example.com"
    assert r.json["data"]["csrf_token"] == c.environ_base["HTTP_X_CSRF_TOKEN"]


def test_login_bad_password_is_401_and_audited(app, client):
    r = client.post("/auth/login", json={"email": "user@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json["error"] == "Invalid credentials"
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").count() == 1


def test_login_wrong_portal_is_forbidden(client):
    r = client.post("/auth/login", json={"email": "user@example.com", "password": PASSWORD, "portal": "admin"})
    assert r.status_code == 403

    r = client.post("/auth/login", json={"email": "ww1@example.com", "password": PASSWORD, "portal": "wellwisher"})
    assert r.status_code == 200


def test_mutating_request_without_csrf_token_is_rejected(app):
    c = login(app, "user@example.com")
    c.environ_base.pop("HTTP_X_CSRF_TOKEN")
    r = c.post("/api/cart/items", json={"tree_id": 1, "quantity": 1})
    assert r.status_code == 400
    assert r.json["error"] == "CSRF token missing or invalid."


def test_logout_clears_session(app):
    c = login(app, "user@example.com")
    assert c.post("/auth/logout").status_code == 200
    assert c.get("/auth/session").status_code == 401


def test_inactive_user_cannot_log_in(app, client):
    with session_scope(app) as s:
        s.query(User).filter(User.email == "user@example.com").update({"is_active": False})
    r = client.post("/auth/login", json={"email": "user@example.com", "password": PASSWORD})
    assert r.status_code == 401


def test_require_role_guards(app):
    from app.adoptrees.rbac import require_role

    @app.get("/_staff-only")
    @require_role("admin", "wellwisher")
    def staff_only_view():
        return {"ok": True}

    assert app.test_client().get("/_staff-only").status_code == 401
    assert login(app, "user@example.com").get("/_staff-only").status_code == 403
    assert login(app, "ww1@example.com").get("/_staff-only").status_code == 200
    assert login(app, "admin@example.com").get("/_staff-only").status_code == 200
