from datetime import datetime, timedelta
from io import BytesIO

from app.adoptrees.db import session_scope
from app.adoptrees.modules.wellwisher.models import WellwisherTask

from conftest import login, place_order, png_bytes


def _images(n=1):
    return [(BytesIO(png_bytes()), f"photo{i}.jpg", "image/png") for i in range(n)]


def _start(c, task_id):
    r = c.put("/api/wellwisher/tasks", json={"task_id": task_id, "status": "in_progress"})
    assert r.status_code == 200, r.json
    return r


def _plant(c, order_id, task_id, **extra):
    data = {
        "task_id": task_id,
        "order_id": order_id,
        "latitude": "12.9715987",
        "longitude": "77.5945627",
        "accuracy": "8.5",
        "location_source": "gps",
        "planting_notes": "Planted near the east fence.",
        "images": _images(2),
    }
    data.update(extra)
    return c.post("/api/wellwisher/planting", data=data, content_type="multipart/form-data")


def test_assigned_wellwisher_sees_pending_tasks(app):
    order = place_order(app)
    ww = login(app, "ww1@example.com")
    r = ww.get("/api/wellwisher/tasks?status=pending")
    assert r.status_code == 200
    tasks = r.json["data"]
    assert [t["task_id"] for t in tasks] == [f"{order['order_id']}-0"]
    assert tasks[0]["order"]["order_id"] == order["order_id"]
    assert tasks[0]["item"]["tree_name"] == "Neem"

    other = login(app, "ww2@example.com")
    assert other.get("/api/wellwisher/tasks").json["data"] == []


def test_full_planting_and_growth_cycle(app):
    order = place_order(app)
    task_id = f"{order['order_id']}-0"
    ww = login(app, "ww1@example.com")

    # cannot plant before starting
    r = _plant(ww, order["order_id"], task_id)
    assert r.status_code == 400

    _start(ww, task_id)
    r = _plant(ww, order["order_id"], task_id)
    assert r.status_code == 201, r.json
    task = r.json["data"]
    assert task["status"] == "completed"
    assert task["location"] == "12.971599, 77.594563"
    assert len(task["planting_details"]["images"]) == 2
    assert task["planting_details"]["location"]["source"] == "gps"
    assert task["order"]["status"] == "completed"
    due = datetime.fromisoformat(task["next_growth_update_due"])
    assert timedelta(days=29) < due - datetime.utcnow() <= timedelta(days=30)

    # owner can read planting evidence
    owner = login(app, "user@example.com")
    r = owner.get(f"/api/wellwisher/planting?task_id={task_id}&order_id={order['order_id']}")
    assert r.status_code == 200
    assert r.json["data"]["planting_details"]["notes"] == "Planted near the east fence."

    r = ww.post(
        "/api/wellwisher/growth-update",
        data={"task_id": task_id, "order_id": order["order_id"], "notes": "Two new leaves", "images": _images(1)},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201, r.json
    assert r.json["data"]["growth_update"]["notes"] == "Two new leaves"
    assert len(r.json["data"]["growth_update"]["images"]) == 1
    assert r.json["data"]["task"]["status"] == "completed"
    # growth photos are not mixed into the planting photos
    assert len(r.json["data"]["task"]["planting_details"]["images"]) == 2

    stats = ww.get("/api/wellwisher/stats").json["data"]
    assert stats["completed_tasks"] == 1
    assert stats["total_trees_helped"] == 2
    assert stats["recent_activity"][0]["task_id"] == task_id


def test_planting_requires_coordinates_and_images(app):
    order = place_order(app)
    task_id = f"{order['order_id']}-0"
    ww = login(app, "ww1@example.com")
    _start(ww, task_id)
    r = _plant(ww, order["order_id"], task_id, latitude="95", images=[])
    assert r.status_code == 400
    details = " ".join(r.json["details"])
    assert "Latitude must be between -90 and 90" in details
    assert "At least one image is required" in details


def test_other_wellwisher_cannot_update_task(app):
    order = place_order(app)
    ww2 = login(app, "ww2@example.com")
    r = ww2.put("/api/wellwisher/tasks", json={"task_id": f"{order['order_id']}-0", "status": "in_progress"})
    assert r.status_code == 403
    assert r.json["error"] == "Task is not assigned to you"


def test_task_cannot_be_marked_completed_without_planting(app):
    order = place_order(app)
    ww = login(app, "ww1@example.com")
    r = ww.put("/api/wellwisher/tasks", json={"task_id": f"{order['order_id']}-0", "status": "completed"})
    assert r.status_code == 400


def test_growth_update_requires_completed_task(app):
    order = place_order(app)
    ww = login(app, "ww1@example.com")
    r = ww.post(
        "/api/wellwisher/growth-update",
        data={"task_id": f"{order['order_id']}-0", "order_id": order["order_id"], "images": _images(1)},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert r.json["error"] == "Task must be completed before uploading growth updates"


def test_growth_update_moves_updating_task_back_to_completed(app):
    order = place_order(app)
    task_id = f"{order['order_id']}-0"
    ww = login(app, "ww1@example.com")
    _start(ww, task_id)
    assert _plant(ww, order["order_id"], task_id).status_code == 201
    with session_scope(app) as s:
        s.query(WellwisherTask).filter(WellwisherTask.task_id == task_id).update({"status": "updating"})

    r = ww.post(
        "/api/wellwisher/growth-update",
        data={"task_id": task_id, "order_id": order["order_id"], "images": _images(1)},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    assert r.json["data"]["task"]["status"] == "completed"


def test_customers_cannot_use_wellwisher_portal(app):
    c = login(app, "user@example.com")
    assert c.get("/api/wellwisher/tasks").status_code == 403
    assert c.get("/api/wellwisher/stats").status_code == 403
