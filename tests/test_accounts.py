from io import BytesIO

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.adoptrees.db import session_scope
from app.adoptrees.models import User
from app.adoptrees.storage import storage_from_config

from conftest import login, png_bytes, user_id


def test_profile_is_self_only(app):
    me = user_id(app, "user@example.com")
    c = login(app, "user@example.com")
    r = c.get(f"/api/users/{me}")
    assert r.status_code == 200
    assert r.json["data"]["email"] == "user@example.com"
    assert "password_hash" not in r.json["data"]

    other = user_id(app, "corp@example.com")
    assert c.get(f"/api/users/{other}").status_code == 403
    assert c.put(f"/api/users/{other}", json={"phone": "9876543210"}).status_code == 403


def test_profile_update(app):
    me = user_id(app, "user@example.com")
    c = login(app, "user@example.com")
    r = c.put(f"/api/users/{me}", json={"name": "John Q Doe", "phone": "9876543210", "address": "4 Hill Street"})
    assert r.status_code == 200, r.json
    assert r.json["message"] == "Profile updated successfully"
    assert r.json["data"]["name"] == "John Q Doe"

    r = c.put(f"/api/users/{me}", json={"name": "John Q Doe"})
    assert r.json["message"] == "No changes"

    r = c.put(f"/api/users/{me}", json={"email": "corp@example.com", "date_of_birth": "2999-01-01"})
    assert r.status_code == 400
    assert "Email already in use." in r.json["details"]
    assert "Date of birth cannot be in the future." in r.json["details"]


def test_public_id_is_created_on_demand(app):
    c = login(app, "corp@example.com")
    r = c.get("/api/users/public-id")
    assert r.status_code == 200
    data = r.json["data"]
    assert len(data["public_id"]) == 10
    assert data["profile_url"] == f"http://testserver/u/{data['public_id']}"
    assert data["qr_code"].startswith("data:image/png;base64,")

    # stable once assigned
    assert c.get("/api/users/public-id").json["data"]["public_id"] == data["public_id"]


def test_profile_picture_upload_and_remove(app):
    c = login(app, "user@example.com")
    r = c.delete("/api/users/profile-picture")
    assert r.status_code == 400

    r = c.post(
        "/api/users/profile-picture",
        data={"image": (BytesIO(b"not an image"), "notes.txt", "text/plain")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400

    r = c.post(
        "/api/users/profile-picture",
        data={"image": (BytesIO(png_bytes()), "me.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200, r.json
    url = r.json["data"]["image"]
    assert c.get(url).status_code == 200

    r = c.delete("/api/users/profile-picture")
    assert r.status_code == 200
    with session_scope(app) as s:
        u = s.query(User).filter(User.email == "user@example.com").one()
        assert u.image_url is None
        assert u.image_key is None


def _upload(c, name: str):
    return c.post(
        "/api/users/profile-picture",
        data={"image": (BytesIO(png_bytes()), name, "image/png")},
        content_type="multipart/form-data",
    )


def _image_key(app) -> str | None:
    with session_scope(app) as s:
        return s.query(User.image_key).filter(User.email == "user@example.com").scalar()


def test_replaced_profile_picture_is_deleted_after_commit(app):
    storage = storage_from_config(app.config)
    c = login(app, "user@example.com")
    assert _upload(c, "first.png").status_code == 200
    first_key = _image_key(app)
    assert storage.exists(first_key)

    assert _upload(c, "second.png").status_code == 200
    second_key = _image_key(app)
    assert second_key != first_key
    assert storage.exists(second_key)
    assert not storage.exists(first_key)

    assert c.delete("/api/users/profile-picture").status_code == 200
    assert not storage.exists(second_key)


def test_failed_commit_keeps_current_profile_picture(app, monkeypatch):
    storage = storage_from_config(app.config)
    c = login(app, "user@example.com")
    assert _upload(c, "first.png").status_code == 200
    first_key = _image_key(app)

    def broken_commit(self):
        raise SQLAlchemyError("database unavailable")

    app.config["PROPAGATE_EXCEPTIONS"] = False
    with monkeypatch.context() as m:
        m.setattr(Session, "commit", broken_commit)
        assert _upload(c, "second.png").status_code == 500
        assert c.delete("/api/users/profile-picture").status_code == 500

    assert _image_key(app) == first_key
    assert storage.exists(first_key)
