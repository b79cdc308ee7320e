from io import BytesIO

from app.adoptrees.db import session_scope
from app.adoptrees.models import AuditEvent
from app.adoptrees.modules.catalog.models import Tree

from conftest import login, png_bytes, tree_id


def _tree_form(**overrides):
    data = {
        "name": "Banyan",
        "price": "1200",
        "info": "Sacred fig with aerial roots.",
        "oxygen_kgs": "250",
        "tree_type": "individual",
        "local_uses": "shade, medicine",
        "food_security": "6",
    }
    data.update(overrides)
    return data


def test_public_tree_list_filters_by_type(client):
    r = client.get("/api/trees?type=company")
    assert r.status_code == 200
    assert [t["name"] for t in r.json["data"]] == ["Teak Block"]

    r = client.get("/api/trees?type=individual")
    assert {t["name"] for t in r.json["data"]} == {"Neem", "Mango"}

    r = client.get("/api/trees?type=nursery")
    assert r.status_code == 400


def test_tree_detail_hides_inactive(app, client):
    neem = tree_id(app, "Neem")
    assert client.get(f"/api/trees/{neem}").json["data"]["name"] == "Neem"
    with session_scope(app) as s:
        s.get(Tree, neem).is_active = False
    assert client.get(f"/api/trees/{neem}").status_code == 404


def test_admin_creates_tree_with_images(app):
    c = login(app, "admin@example.com")
    data = _tree_form()
    data["image"] = (BytesIO(png_bytes()), "banyan.png", "image/png")
    data["small_images"] = [
        (BytesIO(png_bytes(color=(0, 0, 255))), "leaf.png", "image/png"),
        (BytesIO(png_bytes(color=(255, 0, 0))), "bark.png", "image/png"),
    ]
    r = c.post("/api/admin/trees", data=data, content_type="multipart/form-data")
    assert r.status_code == 201, r.json
    tree = r.json["data"]
    assert tree["name"] == "Banyan"
    assert tree["price"] == 1200.0
    assert tree["image_url"].startswith("/media/trees/")
    assert len(tree["small_image_urls"]) == 2
    assert tree["local_uses"] == ["shade", "medicine"]
    assert tree["food_security"] == 6

    # the stored upload is served back from local storage
    assert c.get(tree["image_url"]).status_code == 200

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "tree.create").count() == 1


def test_tree_create_requires_image_and_valid_fields(app):
    c = login(app, "admin@example.com")
    r = c.post(
        "/api/admin/trees",
        data=_tree_form(price="0", info="short"),
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    details = " ".join(r.json["details"])
    assert "Price must be greater than 0" in details
    assert "Info must be between 10 and 500" in details
    assert "Image: No file provided" in details


def test_tree_create_rejects_non_image_upload(app):
    c = login(app, "admin@example.com")
    data = _tree_form()
    data["image"] = (BytesIO(b"%PDF-1.4"), "doc.pdf", "application/pdf")
    r = c.post("/api/admin/trees", data=data, content_type="multipart/form-data")
    assert r.status_code == 400
    assert any("Invalid file type" in d for d in r.json["details"])


def test_admin_update_and_soft_delete_tree(app, client):
    c = login(app, "admin@example.com")
    neem = tree_id(app, "Neem")
    r = c.put(f"/api/admin/trees/{neem}", json={"price": 650, "info": "Hardy native shade tree, drought tolerant."})
    assert r.status_code == 200, r.json
    assert r.json["data"]["price"] == 650.0

    r = c.delete(f"/api/admin/trees/{neem}")
    assert r.status_code == 200
    assert neem not in [t["id"] for t in client.get("/api/trees").json["data"]]
    # admin listing still shows retired trees
    assert neem in [t["id"] for t in c.get("/api/admin/trees").json["data"]]


def test_tree_admin_requires_admin(app, client):
    assert client.get("/api/admin/trees").status_code == 401
    c = login(app, "user@example.com")
    assert c.get("/api/admin/trees").status_code == 403
