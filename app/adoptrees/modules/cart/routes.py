from __future__ import annotations

from flask import Blueprint

from app.adoptrees.db import db_session
from app.adoptrees.modules.cart.service import (
    CartError,
    CartItemMissing,
    add_item,
    cart_summary,
    clear_cart,
    remove_item,
    update_item,
)
from app.adoptrees.rbac import require_permission
from app.adoptrees.utils import fail, ok, request_payload

bp = Blueprint("cart", __name__)


@bp.get("/cart")
@require_permission("cart.use")
def cart_get():
    return ok(cart_summary(db_session()))


@bp.post("/cart/items")
@require_permission("cart.use")
def cart_add():
    s = db_session()
    try:
        add_item(s, request_payload())
    except CartError as e:
        return fail(str(e), 400)
    return ok(cart_summary(s), status=201, message="Added to cart")


@bp.put("/cart/items/<int:tree_id>")
@require_permission("cart.use")
def cart_update(tree_id: int):
    try:
        update_item(tree_id, request_payload())
    except CartItemMissing as e:
        return fail(str(e), 404)
    except CartError as e:
        return fail(str(e), 400)
    return ok(cart_summary(db_session()))


@bp.delete("/cart/items/<int:tree_id>")
@require_permission("cart.use")
def cart_remove(tree_id: int):
    remove_item(tree_id)
    return ok(cart_summary(db_session()))


@bp.delete("/cart")
@require_permission("cart.use")
def cart_clear():
    clear_cart()
    return ok({"items": [], "total_items": 0, "total_price": 0.0}, message="Cart cleared")
