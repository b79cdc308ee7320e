from datetime import datetime, timedelta

from app.adoptrees.db import session_scope
from app.adoptrees.modules.orders.models import Order
from app.adoptrees.modules.orders.service import mark_order_paid

from conftest import login, place_order, tree_id, user_id


def _pay(app, order_id: str) -> None:
    with session_scope(app) as s:
        o = s.query(Order).filter(Order.order_id == order_id).one()
        mark_order_paid(s, o, f"pay_{order_id}", source="test")


def test_place_order_snapshots_tree_price_and_creates_tasks(app):
    mango = tree_id(app, "Mango")
    order = place_order(
        app,
        items=[
            {"tree_id": tree_id(app, "Neem"), "quantity": 2, "price": 1},
            {"tree_id": mango, "quantity": 1, "adoption_type": "gift", "recipient_name": "Mom", "recipient_email": "mom@example.com"},
        ],
    )
    assert order["order_id"].startswith("JOH")
    assert len(order["order_id"]) == 8
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    # client-supplied prices are ignored
    assert order["total_amount"] == 2 * 500.0 + 800.0
    assert order["tree_count"] == 3
    assert order["oxygen_total"] == 2 * 100.0 + 120.0
    assert order["is_gift"] is True
    assert order["gift_recipient_email"] == "mom@example.com"

    tasks = order["wellwisher_tasks"]
    assert [t["task_id"] for t in tasks] == [f"{order['order_id']}-0", f"{order['order_id']}-1"]
    assert all(t["status"] == "pending" for t in tasks)
    assert tasks[1]["task"] == "Plant and care for Mango"


def test_order_validation(app):
    c = login(app, "user@example.com")
    r = c.post("/api/orders", json={"items": []})
    assert r.status_code == 400

    r = c.post("/api/orders", json={"items": [{"tree_id": tree_id(app, "Neem"), "adoption_type": "gift"}]})
    assert r.status_code == 400
    assert "recipient name is required" in r.json["error"]

    r = c.post("/api/orders", json={"items": [{"tree_id": 4242, "quantity": 1}]})
    assert r.status_code == 400
    assert r.json["error"] == "One or more trees not found or inactive"


def test_order_list_collapses_identical_pending_orders(app):
    first = place_order(app)
    second = place_order(app)
    c = login(app, "user@example.com")
    r = c.get("/api/orders")
    assert r.status_code == 200
    ids = [o["order_id"] for o in r.json["data"]]
    assert ids == [second["order_id"]]
    assert first["order_id"] not in ids
    assert r.json["pagination"]["total_count"] == 1


def test_order_detail_owner_or_admin_only(app):
    order = place_order(app)
    corp = login(app, "corp@example.com")
    assert corp.get(f"/api/orders/{order['order_id']}").status_code == 403

    admin = login(app, "admin@example.com")
    r = admin.get(f"/api/orders/{order['order_id']}")
    assert r.status_code == 200
    assert r.json["data"]["assigned_wellwisher"]["email"] == "ww1@example.com"


def test_public_profile_shows_only_paid_orders(app, client):
    paid = place_order(app)
    place_order(app, items=[{"tree_id": tree_id(app, "Mango"), "quantity": 1}])
    _pay(app, paid["order_id"])

    r = client.get("/api/public/users/PUB0001/orders")
    assert r.status_code == 200
    data = r.json["data"]
    assert data["user"]["name"] == "John Doe"
    assert [o["order_id"] for o in data["orders"]] == [paid["order_id"]]
    assert data["total_trees"] == 2
    assert data["total_oxygen"] == 200.0
    assert "user_email" not in data["orders"][0]

    r = client.get(f"/api/public/users/pub0001/orders/{paid['order_id']}")
    assert r.status_code == 200
    assert client.get("/api/public/users/nobody/orders").status_code == 404


def test_achievers_ranking(app, client):
    a = place_order(app, items=[{"tree_id": tree_id(app, "Neem"), "quantity": 1}])
    b = place_order(app, email="corp@example.com", items=[{"tree_id": tree_id(app, "Teak Block"), "quantity": 3}])
    _pay(app, a["order_id"])
    _pay(app, b["order_id"])

    r = client.get("/api/achievers?sort_by=trees")
    assert r.status_code == 200
    rows = r.json["data"]
    assert [row["user_id"] for row in rows] == [user_id(app, "corp@example.com"), user_id(app, "user@example.com")]
    assert rows[0]["rank"] == 1
    assert rows[0]["total_trees"] == 3

    assert client.get("/api/achievers?sort_by=height").status_code == 400


def test_certificate_pdf_only_for_paid_owner(app):
    order = place_order(app)
    c = login(app, "user@example.com")
    r = c.get(f"/api/certificates/{order['order_id']}")
    assert r.status_code == 400

    _pay(app, order["order_id"])
    r = c.get(f"/api/certificates/{order['order_id']}")
    assert r.status_code == 200
    assert r.mimetype == "application/pdf"
    assert r.data.startswith(b"%PDF")
    assert f"certificate-{order['order_id']}.pdf" in r.headers["Content-Disposition"]

    with session_scope(app) as s:
        assert s.query(Order).filter(Order.order_id == order["order_id"]).one().certificate_pdf is not None

    corp = login(app, "corp@example.com")
    assert corp.get(f"/api/certificates/{order['order_id']}").status_code == 403


def test_paid_order_is_confirmed(app):
    order = place_order(app)
    _pay(app, order["order_id"])
    with session_scope(app) as s:
        o = s.query(Order).filter(Order.order_id == order["order_id"]).one()
        assert o.status == "confirmed"
        assert o.payment_status == "paid"
        assert o.payment_id == f"pay_{order['order_id']}"
        assert o.updated_at >= datetime.utcnow() - timedelta(minutes=1)


def test_non_text_checkout_fields_are_rejected(app):
    c = login(app, "user@example.com")
    neem = tree_id(app, "Neem")

    r = c.post("/api/orders", json={"items": [{"tree_id": neem, "adoption_type": 1}]})
    assert r.status_code == 400
    assert "Item 1: adoption_type must be text." in r.json["error"]

    r = c.post("/api/orders", json={"items": [{"tree_id": neem}], "gift_message": 5})
    assert r.status_code == 400
    assert r.json["error"] == "gift_message must be text."

    r = c.post("/api/orders", json={"items": [{"tree_id": neem}], "coupon_code": ["GREEN10"]})
    assert r.status_code == 400
    with session_scope(app) as s:
        assert s.query(Order).count() == 0
