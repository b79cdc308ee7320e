from app.adoptrees.db import session_scope
from app.adoptrees.modules.coupons.models import Coupon
from app.adoptrees.modules.orders.models import Order
from app.adoptrees.modules.orders.service import mark_order_paid

from conftest import login, place_order


def _create_coupon(app, **overrides):
    c = login(app, "admin@example.com")
    body = {"code": "green10", "category": "individual", "discount_percentage": 10}
    body.update(overrides)
    return c.post("/api/admin/coupons", json=body)


def test_admin_creates_coupon_with_uppercased_code(app):
    r = _create_coupon(app)
    assert r.status_code == 201, r.json
    assert r.json["data"]["code"] == "GREEN10"
    assert r.json["data"]["usage_limit_type"] == "unlimited"

    dup = _create_coupon(app, code="GREEN10")
    assert dup.status_code == 400
    assert dup.json["error"] == "Coupon code already exists"


def test_coupon_validation_errors(app):
    r = _create_coupon(app, code="bad code!", discount_percentage=150, usage_limit_type="custom")
    assert r.status_code == 400
    details = " ".join(r.json["details"])
    assert "letters and numbers" in details
    assert "between 1 and 100" in details
    assert "Total usage limit is required" in details


def test_validate_applies_discount(app):
    _create_coupon(app)
    c = login(app, "user@example.com")
    r = c.post("/api/coupons/validate", json={"code": "green10", "subtotal": 1000})
    assert r.status_code == 200, r.json
    assert r.json["data"]["discount_amount"] == 100.0
    assert r.json["data"]["final_amount"] == 900.0


def test_validate_rejects_wrong_category_and_unknown_code(app):
    _create_coupon(app)
    corp = login(app, "corp@example.com")
    r = corp.post("/api/coupons/validate", json={"code": "GREEN10", "subtotal": 1000})
    assert r.status_code == 400
    assert "individual" in r.json["error"]

    r = corp.post("/api/coupons/validate", json={"code": "NOPE", "subtotal": 1000})
    assert r.status_code == 404


def test_coupon_used_on_payment_then_hidden_once_per_user_limit_reached(app):
    _create_coupon(app)
    order = place_order(app, coupon_code="GREEN10")
    assert order["coupon_code"] == "GREEN10"
    assert order["total_amount"] == 1000.0
    assert order["discount_amount"] == 100.0
    assert order["final_amount"] == 900.0

    with session_scope(app) as s:
        o = s.query(Order).filter(Order.order_id == order["order_id"]).one()
        assert mark_order_paid(s, o, "pay_1", source="test") is True
        # second confirmation is a no-op and does not count the coupon again
        assert mark_order_paid(s, o, "pay_1", source="test") is False
    with session_scope(app) as s:
        assert s.query(Coupon).filter(Coupon.code == "GREEN10").one().used_count == 1

    c = login(app, "user@example.com")
    assert c.get("/api/coupons/available").json["data"] == []
    r = c.post("/api/coupons/validate", json={"code": "GREEN10", "subtotal": 500})
    assert r.status_code == 400
    assert "maximum number of times" in r.json["error"]


def test_custom_total_limit_exhausts(app):
    _create_coupon(app, code="ONCE", usage_limit_type="custom", total_usage_limit=1, per_user_usage_limit=5)
    with session_scope(app) as s:
        s.query(Coupon).filter(Coupon.code == "ONCE").update({"used_count": 1})
    c = login(app, "user@example.com")
    r = c.post("/api/coupons/validate", json={"code": "ONCE", "subtotal": 100})
    assert r.status_code == 400
    assert "usage limit" in r.json["error"]


def test_admin_update_and_delete_coupon(app):
    coupon_id = _create_coupon(app).json["data"]["id"]
    c = login(app, "admin@example.com")
    r = c.put(f"/api/admin/coupons/{coupon_id}", json={"discount_percentage": 25, "is_active": False})
    assert r.status_code == 200, r.json
    assert r.json["data"]["discount_percentage"] == 25.0
    assert r.json["data"]["is_active"] is False

    assert c.delete(f"/api/admin/coupons/{coupon_id}").status_code == 200
    assert c.get(f"/api/admin/coupons/{coupon_id}").status_code == 404
