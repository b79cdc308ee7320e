from app.adoptrees.db import session_scope
from app.adoptrees.modules.catalog.models import Tree

from conftest import login, tree_id


def test_cart_add_merges_lines_and_prices_from_catalog(app):
    c = login(app, "user@example.com")
    neem = tree_id(app, "Neem")
    mango = tree_id(app, "Mango")

    assert c.post("/api/cart/items", json={"tree_id": neem, "quantity": 2}).status_code == 201
    assert c.post("/api/cart/items", json={"tree_id": neem, "quantity": 1}).status_code == 201
    r = c.post("/api/cart/items", json={"tree_id": mango, "quantity": 1})
    assert r.status_code == 201

    cart = r.json["data"]
    assert cart["total_items"] == 4
    assert cart["total_price"] == 3 * 500.0 + 800.0
    line = next(i for i in cart["items"] if i["tree_id"] == neem)
    assert line["quantity"] == 3
    assert line["line_total"] == 1500.0


def test_cart_update_gift_fields_and_zero_quantity_removes(app):
    c = login(app, "user@example.com")
    neem = tree_id(app, "Neem")
    c.post("/api/cart/items", json={"tree_id": neem})

    r = c.put(
        f"/api/cart/items/{neem}",
        json={"adoption_type": "gift", "recipient_name": "Mom", "recipient_email": "mom@example.com"},
    )
    assert r.status_code == 200
    line = r.json["data"]["items"][0]
    assert line["adoption_type"] == "gift"
    assert line["recipient_name"] == "Mom"

    r = c.put(f"/api/cart/items/{neem}", json={"quantity": 0})
    assert r.json["data"]["items"] == []

    assert c.put(f"/api/cart/items/{neem}", json={"quantity": 1}).status_code == 404


def test_cart_rejects_unknown_tree_and_bad_adoption_type(app):
    c = login(app, "user@example.com")
    assert c.post("/api/cart/items", json={"tree_id": 9999}).status_code == 400
    r = c.post("/api/cart/items", json={"tree_id": tree_id(app, "Neem"), "adoption_type": "lease"})
    assert r.status_code == 400


def test_cart_drops_lines_for_retired_trees(app):
    c = login(app, "user@example.com")
    neem = tree_id(app, "Neem")
    mango = tree_id(app, "Mango")
    c.post("/api/cart/items", json={"tree_id": neem})
    c.post("/api/cart/items", json={"tree_id": mango})
    with session_scope(app) as s:
        s.get(Tree, mango).is_active = False

    cart = c.get("/api/cart").json["data"]
    assert [i["tree_id"] for i in cart["items"]] == [neem]


def test_cart_clear_and_remove(app):
    c = login(app, "user@example.com")
    neem = tree_id(app, "Neem")
    c.post("/api/cart/items", json={"tree_id": neem})
    assert c.delete(f"/api/cart/items/{neem}").json["data"]["items"] == []
    c.post("/api/cart/items", json={"tree_id": neem})
    assert c.delete("/api/cart").json["data"]["total_items"] == 0
    assert c.get("/api/cart").json["data"]["items"] == []


def test_checkout_from_cart_clears_it(app):
    c = login(app, "user@example.com")
    neem = tree_id(app, "Neem")
    c.post("/api/cart/items", json={"tree_id": neem, "quantity": 2})
    r = c.post("/api/orders", json={})
    assert r.status_code == 201, r.json
    assert r.json["data"]["tree_count"] == 2
    assert c.get("/api/cart").json["data"]["items"] == []


def test_cart_is_customer_only(app):
    c = login(app, "ww1@example.com")
    assert c.get("/api/cart").status_code == 403
