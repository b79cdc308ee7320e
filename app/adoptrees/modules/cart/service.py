"""
Shopping cart kept in the signed session cookie.

Lines are `{tree_id, quantity, adoption_type, recipient_name, recipient_email, gift_message}`;
prices are never stored in the cart and always come from the catalog.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from flask import session

from app.adoptrees.constants import ADOPTION_TYPES
from app.adoptrees.utils import parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

CART_KEY = "cart"
MAX_LINE_QUANTITY = 1000
GIFT_FIELDS = ("recipient_name", "recipient_email", "gift_message")


class CartError(ValueError):
    pass


class CartItemMissing(CartError):
    pass


def get_cart() -> list[dict]:
    lines = session.get(CART_KEY) or []
    return [dict(line) for line in lines if isinstance(line, dict)]


def save_cart(lines: list[dict]) -> None:
    session[CART_KEY] = lines
    session.modified = True


def clear_cart() -> None:
    session.pop(CART_KEY, None)


def _find(lines: list[dict], tree_id: int) -> dict | None:
    for line in lines:
        if line.get("tree_id") == tree_id:
            return line
    return None


def _apply_gift_fields(line: dict, payload: dict) -> None:
    if "adoption_type" in payload:
        adoption_type = (payload.get("adoption_type") or "self").strip()
        if adoption_type not in ADOPTION_TYPES:
            raise CartError("Adoption type must be self or gift")
        line["adoption_type"] = adoption_type
    for field in GIFT_FIELDS:
        if field in payload:
            line[field] = (payload.get(field) or "").strip() or None
    if line.get("adoption_type") != "gift":
        for field in GIFT_FIELDS:
            line.pop(field, None)


def add_item(s: "Session", payload: dict) -> list[dict]:
    from app.adoptrees.modules.catalog.models import Tree

    tree_id = parse_int(payload.get("tree_id"))
    if tree_id is None:
        raise CartError("tree_id is required")
    quantity = parse_int(payload.get("quantity"), 1)
    if quantity is None or quantity < 1:
        raise CartError("Quantity must be at least 1")
    tree = s.get(Tree, tree_id)
    if tree is None or not tree.is_active:
        raise CartError("Tree not found or inactive")

    lines = get_cart()
    line = _find(lines, tree_id)
    if line is None:
        line = {"tree_id": tree_id, "quantity": 0, "adoption_type": "self"}
        lines.append(line)
    line["quantity"] = min(line["quantity"] + quantity, MAX_LINE_QUANTITY)
    _apply_gift_fields(line, payload)
    save_cart(lines)
    return lines


def update_item(tree_id: int, payload: dict) -> list[dict]:
    lines = get_cart()
    line = _find(lines, tree_id)
    if line is None:
        raise CartItemMissing("Item not in cart")
    if "quantity" in payload:
        quantity = parse_int(payload.get("quantity"))
        if quantity is None:
            raise CartError("Quantity must be a number")
        if quantity <= 0:
            lines = [l for l in lines if l.get("tree_id") != tree_id]
            save_cart(lines)
            return lines
        line["quantity"] = min(quantity, MAX_LINE_QUANTITY)
    _apply_gift_fields(line, payload)
    save_cart(lines)
    return lines


def remove_item(tree_id: int) -> list[dict]:
    lines = [l for l in get_cart() if l.get("tree_id") != tree_id]
    save_cart(lines)
    return lines


def cart_summary(s: "Session") -> dict:
    """Cart lines joined with current catalog data; lines for retired trees are dropped."""
    from app.adoptrees.modules.catalog.models import Tree

    lines = get_cart()
    ids = [l["tree_id"] for l in lines]
    trees = {t.id: t for t in s.query(Tree).filter(Tree.id.in_(ids), Tree.is_active.is_(True)).all()} if ids else {}

    out = []
    kept = []
    for line in lines:
        tree = trees.get(line["tree_id"])
        if tree is None:
            continue
        kept.append(line)
        out.append(
            {
                **line,
                "name": tree.name,
                "price": tree.price,
                "image_url": tree.image_url,
                "oxygen_kgs": tree.oxygen_kgs,
                "tree_type": tree.tree_type,
                "line_total": round(tree.price * line["quantity"], 2),
            }
        )
    if len(kept) != len(lines):
        save_cart(kept)
    return {
        "items": out,
        "total_items": sum(l["quantity"] for l in out),
        "total_price": round(sum(l["line_total"] for l in out), 2),
    }


def cart_checkout_items() -> list[dict]:
    return get_cart()
