from io import BytesIO

import pytest
from PIL import Image
from werkzeug.security import generate_password_hash

from app.adoptrees import create_app
from app.adoptrees.db import session_scope
from app.adoptrees.models import Base, User
from app.adoptrees.modules.catalog.models import Tree
from app.adoptrees.security import reset_rate_limits

PASSWORD = "Passw0rd!"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "0")
    monkeypatch.setenv("APP_URL", "http://testserver")
    monkeypatch.setenv("RAZORPAY_KEY_ID", "rzp_test_key")
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", "rzp_test_secret")
    monkeypatch.setenv("RAZORPAY_WEBHOOK_SECRET", "whsec_test")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        pw = generate_password_hash(PASSWORD)
        s.add_all(
            [
                User(email="admin@example.com", password_hash=pw, name="Admin", role="admin", user_type="individual"),
                User(email="ww1@example.com", password_hash=pw, name="Asha", role="wellwisher", user_type="individual"),
                User(email="ww2@example.com", password_hash=pw, name="Ravi", role="wellwisher", user_type="individual"),
                User(
                    email="user@example.com",
                    password_hash=pw,
                    name="John Doe",
                    role="user",
                    user_type="individual",
                    public_id="pub0001",
                ),
                User(
                    email="corp@example.com",
                    password_hash=pw,
                    company_name="Green Corp",
                    role="user",
                    user_type="company",
                ),
                Tree(
                    name="Neem",
                    price=500.0,
                    info="Hardy native shade tree.",
                    oxygen_kgs=100.0,
                    tree_type="individual",
                    image_url="/media/trees/neem.png",
                ),
                Tree(
                    name="Mango",
                    price=800.0,
                    info="Fruit bearing tree for orchards.",
                    oxygen_kgs=120.0,
                    tree_type="individual",
                    image_url="/media/trees/mango.png",
                ),
                Tree(
                    name="Teak Block",
                    price=20000.0,
                    info="Corporate plantation block of teak.",
                    oxygen_kgs=5000.0,
                    tree_type="company",
                    image_url="/media/trees/teak.png",
                    package_quantity=50,
                ),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def _clear_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


def login(app, email: str, password: str = PASSWORD, portal: str | None = None):
    """Fresh client logged in as `email`, with the CSRF header preset."""
    c = app.test_client()
    body = {"email": email, "password": password}
    if portal:
        body["portal"] = portal
    r = c.post("/auth/login", json=body)
    assert r.status_code == 200, r.json
    c.environ_base["HTTP_X_CSRF_TOKEN"] = r.json["data"]["csrf_token"]
    return c


def user_id(app, email: str) -> int:
    with session_scope(app) as s:
        return s.query(User.id).filter(User.email == email).scalar()


def tree_id(app, name: str) -> int:
    with session_scope(app) as s:
        return s.query(Tree.id).filter(Tree.name == name).scalar()


def png_bytes(size=(8, 8), color=(34, 139, 34)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def place_order(app, email: str = "user@example.com", items=None, **extra) -> dict:
    c = login(app, email)
    payload = {"items": items or [{"tree_id": tree_id(app, "Neem"), "quantity": 2}]}
    payload.update(extra)
    r = c.post("/api/orders", json=payload)
    assert r.status_code == 201, r.json
    return r.json["data"]
