from datetime import datetime, timedelta

from app.adoptrees.db import session_scope
from app.adoptrees.models import AuditEvent, User
from app.adoptrees.modules.orders.models import Order
from app.adoptrees.modules.orders.service import mark_order_paid

from conftest import PASSWORD, login, place_order, tree_id, user_id


def _pay(app, order_id: str) -> None:
    with session_scope(app) as s:
        o = s.query(Order).filter(Order.order_id == order_id).one()
        mark_order_paid(s, o, f"pay_{order_id}", source="test")


def test_overview_counts(app):
    paid = place_order(app)
    place_order(app, email="corp@example.com", items=[{"tree_id": tree_id(app, "Teak Block"), "quantity": 1}])
    _pay(app, paid["order_id"])

    admin = login(app, "admin@example.com")
    r = admin.get("/api/admin/overview")
    assert r.status_code == 200
    data = r.json["data"]
    assert data["trees"] == {"total": 3, "active": 3}
    assert data["users"] == {"individual": 1, "company": 1}
    assert data["wellwishers"] == 2
    assert data["orders"]["total"] == 2
    assert data["orders"]["paid"] == 1
    assert data["orders"]["by_status"] == {"confirmed": 1, "pending": 1}
    assert data["revenue"] == 1000.0


def test_admin_endpoints_need_admin(app, client):
    assert client.get("/api/admin/overview").status_code == 401
    c = login(app, "user@example.com")
    assert c.get("/api/admin/overview").status_code == 403
    assert c.get("/api/admin/adoptions").status_code == 403
    ww = login(app, "ww1@example.com")
    assert ww.get("/api/admin/users").status_code == 403


def test_users_list_detail_and_delete(app):
    admin = login(app, "admin@example.com")
    r = admin.get("/api/admin/users")
    assert {u["email"] for u in r.json["data"]} == {"user@example.com", "corp@example.com"}
    assert r.json["count"] == 2

    r = admin.get("/api/admin/users?type=company")
    assert [u["company_name"] for u in r.json["data"]] == ["Green Corp"]

    place_order(app)
    customer = user_id(app, "user@example.com")
    r = admin.get(f"/api/admin/users/{customer}")
    assert r.status_code == 200
    assert r.json["data"]["order_count"] == 1
    assert admin.get("/api/admin/users/9999").status_code == 404

    r = admin.delete(f"/api/admin/users/{user_id(app, 'admin@example.com')}")
    assert r.status_code == 403

    r = admin.delete(f"/api/admin/users/{customer}")
    assert r.status_code == 200
    with session_scope(app) as s:
        assert s.get(User, customer) is None
        # orders survive the account, detached from it
        assert s.query(Order).one().user_id is None
        assert s.query(AuditEvent).filter(AuditEvent.action == "user.delete").count() == 1


def test_adoptions_filters_and_metrics(app):
    neem = place_order(app)
    mango = place_order(app, items=[{"tree_id": tree_id(app, "Mango"), "quantity": 1}])
    corp = place_order(app, email="corp@example.com", items=[{"tree_id": tree_id(app, "Teak Block"), "quantity": 1}])
    _pay(app, neem["order_id"])

    admin = login(app, "admin@example.com")
    r = admin.get("/api/admin/adoptions")
    assert r.status_code == 200
    assert len(r.json["data"]) == 3
    assert r.json["pagination"]["total_count"] == 3
    metrics = r.json["metrics"]
    assert metrics["total_orders"] == 3
    assert metrics["total_revenue"] == 1000.0
    assert metrics["status_counts"]["confirmed"] == 1
    assert metrics["user_type_counts"] == {"individual": 2, "company": 1}

    r = admin.get("/api/admin/adoptions?search=mango")
    assert [o["order_id"] for o in r.json["data"]] == [mango["order_id"]]

    r = admin.get("/api/admin/adoptions?status=confirmed")
    assert [o["order_id"] for o in r.json["data"]] == [neem["order_id"]]

    r = admin.get("/api/admin/adoptions?user_type=company")
    assert [o["order_id"] for o in r.json["data"]] == [corp["order_id"]]

    today = datetime.utcnow().date()
    r = admin.get(f"/api/admin/adoptions?start_date={today.isoformat()}&end_date={today.isoformat()}")
    assert len(r.json["data"]) == 3
    yesterday = (today - timedelta(days=1)).isoformat()
    r = admin.get(f"/api/admin/adoptions?end_date={yesterday}")
    assert r.json["data"] == []

    assert admin.get("/api/admin/adoptions?start_date=June").status_code == 400

    r = admin.get("/api/admin/adoptions?sort_by=final_amount&sort_order=asc&limit=1")
    assert [o["order_id"] for o in r.json["data"]] == [mango["order_id"]]
    assert r.json["pagination"]["total_pages"] == 3

    r = admin.get("/api/admin/adoptions/all")
    assert len(r.json["data"]) == 3


def test_adoption_update_and_delete(app):
    order = place_order(app)
    admin = login(app, "admin@example.com")

    r = admin.put("/api/admin/adoptions", json={"order_id": order["order_id"], "status": "planted", "notes": "  East plot  "})
    assert r.status_code == 200, r.json
    assert r.json["data"]["status"] == "planted"
    assert r.json["data"]["admin_notes"] == "East plot"

    r = admin.put("/api/admin/adoptions", json={"order_id": order["order_id"], "status": "lost"})
    assert r.status_code == 400
    assert r.json["error"].startswith("Invalid status")
    assert admin.put("/api/admin/adoptions", json={"order_id": "NOPE0000", "status": "planted"}).status_code == 404
    assert admin.put("/api/admin/adoptions", json={"order_id": order["order_id"]}).status_code == 400

    r = admin.get("/api/admin/audit?action=order.admin_update&actor_email=ADMIN@")
    assert r.status_code == 200
    assert r.json["count"] == 1
    assert r.json["data"][0]["metadata"]["changes"]["status"] == {"old": "pending", "new": "planted"}

    with session_scope(app) as s:
        pk = s.query(Order.id).filter(Order.order_id == order["order_id"]).scalar()
    r = admin.delete(f"/api/admin/adoptions/{pk}")
    assert r.status_code == 200
    assert r.json["data"] == {"order_id": order["order_id"]}
    assert admin.delete(f"/api/admin/adoptions/{pk}").status_code == 404
    with session_scope(app) as s:
        assert s.query(Order).count() == 0


def test_cleanup_duplicates_never_removes_paid_orders(app):
    first = place_order(app)
    second = place_order(app)
    third = place_order(app)
    place_order(app, items=[{"tree_id": tree_id(app, "Mango"), "quantity": 1}])
    _pay(app, first["order_id"])
    _pay(app, second["order_id"])

    admin = login(app, "admin@example.com")
    r = admin.post("/api/admin/adoptions/cleanup-duplicates", json={})
    assert r.status_code == 200
    result = r.json["data"]
    assert result["dry_run"] is True
    assert result["summary"] == {"total_duplicates_found": 2, "total_duplicates_deleted": 0, "users_affected": 1}
    group = result["duplicates"][0]
    assert group["keep_order_id"] == second["order_id"]
    removable = {d["order_id"]: d["removable"] for d in group["duplicate_orders"]}
    assert removable == {first["order_id"]: False, third["order_id"]: True}
    with session_scope(app) as s:
        assert s.query(Order).count() == 4

    r = admin.post("/api/admin/adoptions/cleanup-duplicates", json={"dry_run": False})
    assert r.json["data"]["summary"]["total_duplicates_deleted"] == 1
    assert r.json["message"] == "Deleted 1 duplicate orders"
    with session_scope(app) as s:
        remaining = {o for (o,) in s.query(Order.order_id).all()}
    assert third["order_id"] not in remaining
    assert {first["order_id"], second["order_id"]} <= remaining


def test_manual_cron_run(app):
    admin = login(app, "admin@example.com")
    r = admin.post("/api/admin/cron/run", json={"job": "growth"})
    assert r.status_code == 200
    assert r.json["data"]["job"] == "growth"
    assert r.json["data"]["tasks_needing_update"] == 0

    r = admin.post("/api/admin/cron/run", json={"job": "quarterly"})
    assert r.json["data"]["tasks_moved_to_updating"] == 0
    assert r.json["message"] == "quarterly sweep completed"

    r = admin.post("/api/admin/cron/run", json={"job": "hourly"})
    assert r.status_code == 400

    r = admin.get("/api/admin/audit?action=cron.run")
    assert [e["entity_id"] for e in r.json["data"]] == ["quarterly", "growth"]
    assert admin.get("/api/admin/audit?date_from=yesterday").status_code == 400


def test_wellwisher_admin_crud(app):
    admin = login(app, "admin@example.com")
    body = {"name": "Meena Kumari", "email": "Meena@Example.com", "phone": "9876543210", "password": PASSWORD}
    r = admin.post("/api/admin/wellwishers", json=body)
    assert r.status_code == 201, r.json
    created = r.json["data"]
    assert created["email"] == "meena@example.com"
    assert created["role"] == "wellwisher"
    assert created["task_counts"] == {"upcoming": 0, "ongoing": 0, "completed": 0, "updating": 0}

    assert admin.post("/api/admin/wellwishers", json=body).status_code == 409
    r = admin.post("/api/admin/wellwishers", json={"name": "M", "email": "bad", "phone": "12", "password": "x"})
    assert r.status_code == 400
    assert len(r.json["details"]) >= 3

    r = admin.get("/api/admin/wellwishers?search=meena")
    assert [w["id"] for w in r.json["data"]] == [created["id"]]
    r = admin.get("/api/admin/wellwishers")
    assert r.json["pagination"]["total_count"] == 3

    place_order(app)
    ww1 = user_id(app, "ww1@example.com")
    r = admin.get(f"/api/admin/wellwishers/{ww1}")
    assert r.json["data"]["task_counts"]["upcoming"] == 1

    r = admin.put(f"/api/admin/wellwishers/{created['id']}", json={"address": "12 Lake Road"})
    assert r.status_code == 200
    assert r.json["data"]["address"] == "12 Lake Road"
    r = admin.put(f"/api/admin/wellwishers/{created['id']}", json={"email": "ww1@example.com"})
    assert r.status_code == 409
    assert admin.put(f"/api/admin/wellwishers/{user_id(app, 'user@example.com')}", json={}).status_code == 404

    login(app, "meena@example.com")
