from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.adoptrees.audit import record_event
from app.adoptrees.constants import USER_TYPES
from app.adoptrees.images import StoredImage, delete_image_quietly
from app.adoptrees.utils import iso, parse_float, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.adoptrees.models import User
    from app.adoptrees.modules.catalog.models import Tree
    from app.adoptrees.storage import Storage


MAX_PRICE = 1_000_000
MAX_OXYGEN_KGS = 10_000
MAX_PACKAGE_QUANTITY = 1000
RATING_FIELDS = ("food_security", "economic_development", "co2_absorption", "environmental_protection")


def _parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw or "").strip().lower() in ("1", "true", "yes", "on")


def _parse_list(raw: Any) -> list[str]:
    if raw is None or raw == "":
        return []
    if isinstance(raw, list):
        return [str(v).strip() for v in raw if str(v).strip()]
    text = str(raw).strip()
    if text.startswith("["):
        try:
            value = json.loads(text)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list):
            return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in text.split(",") if part.strip()]


def validate_tree_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate tree creation/update payload. Returns list of errors."""
    errors = []

    def present(key: str) -> bool:
        return not partial or key in payload

    if present("name"):
        name = (payload.get("name") or "").strip()
        if len(name) < 2 or len(name) > 100:
            errors.append("Name must be between 2 and 100 characters.")

    if present("price"):
        price = parse_float(payload.get("price"))
        if price is None or price <= 0 or price > MAX_PRICE:
            errors.append(f"Price must be greater than 0 and at most {MAX_PRICE}.")

    if present("info"):
        info = (payload.get("info") or "").strip()
        if len(info) < 10 or len(info) > 500:
            errors.append("Info must be between 10 and 500 characters.")

    if present("oxygen_kgs"):
        oxygen = parse_float(payload.get("oxygen_kgs"))
        if oxygen is None or oxygen < 0 or oxygen > MAX_OXYGEN_KGS:
            errors.append(f"Oxygen (kg) must be between 0 and {MAX_OXYGEN_KGS}.")

    tree_type = (payload.get("tree_type") or "").strip()
    if tree_type and tree_type not in USER_TYPES:
        errors.append("Tree type must be individual or company.")

    if payload.get("package_quantity") not in (None, ""):
        qty = parse_int(payload.get("package_quantity"))
        if qty is None or qty < 1 or qty > MAX_PACKAGE_QUANTITY:
            errors.append(f"Package quantity must be between 1 and {MAX_PACKAGE_QUANTITY}.")

    if payload.get("package_price") not in (None, ""):
        package_price = parse_float(payload.get("package_price"))
        if package_price is None or package_price < 0:
            errors.append("Package price cannot be negative.")

    if payload.get("co2") not in (None, "") and parse_float(payload.get("co2")) is None:
        errors.append("CO2 must be a number.")

    for field in RATING_FIELDS:
        if payload.get(field) in (None, ""):
            continue
        rating = parse_int(payload.get(field))
        if rating is None or rating < 0 or rating > 10:
            errors.append(f"{field.replace('_', ' ').capitalize()} must be between 0 and 10.")
    return errors


def _apply_optional_fields(tree: "Tree", payload: dict) -> dict:
    changes: dict[str, dict] = {}

    def _set(field: str, new: Any) -> None:
        old = getattr(tree, field)
        if new != old:
            changes[field] = {"old": old, "new": new}
            setattr(tree, field, new)

    if "package_quantity" in payload:
        _set("package_quantity", parse_int(payload.get("package_quantity"), 1) or 1)
    if "package_price" in payload:
        _set("package_price", parse_float(payload.get("package_price")))
    if "scientific_species" in payload:
        _set("scientific_species", (payload.get("scientific_species") or "").strip() or None)
    if "species_info_available" in payload:
        _set("species_info_available", _parse_bool(payload.get("species_info_available")))
    if "co2" in payload:
        _set("co2", parse_float(payload.get("co2")))
    for field in RATING_FIELDS:
        if field in payload:
            _set(field, parse_int(payload.get(field)))
    if "local_uses" in payload:
        _set("local_uses", _parse_list(payload.get("local_uses")))
    return changes


def create_tree(
    s: "Session",
    payload: dict,
    user: "User",
    image: StoredImage,
    small_images: list[StoredImage] | None = None,
) -> "Tree":
    from app.adoptrees.modules.catalog.models import Tree

    now = datetime.utcnow()
    small_images = small_images or []
    tree = Tree(
        name=(payload.get("name") or "").strip(),
        price=parse_float(payload.get("price"), 0.0),
        info=(payload.get("info") or "").strip(),
        oxygen_kgs=parse_float(payload.get("oxygen_kgs"), 0.0),
        tree_type=(payload.get("tree_type") or "individual").strip(),
        is_active=True,
        image_url=image.url,
        image_key=image.key,
        small_image_urls=[i.url for i in small_images],
        small_image_keys=[i.key for i in small_images],
        package_quantity=1,
        created_at=now,
        updated_at=now,
    )
    _apply_optional_fields(tree, payload)
    s.add(tree)
    s.flush()

    record_event(
        s,
        actor=user,
        action="tree.create",
        entity_type="Tree",
        entity_id=str(tree.id),
        metadata={"name": tree.name, "price": tree.price, "tree_type": tree.tree_type},
    )
    return tree


def update_tree(
    s: "Session",
    tree: "Tree",
    payload: dict,
    user: "User",
    *,
    image: StoredImage | None = None,
    storage: "Storage | None" = None,
) -> "Tree":
    changes: dict[str, dict] = {}

    new_name = (payload.get("name") or "").strip()
    if new_name and new_name != tree.name:
        changes["name"] = {"old": tree.name, "new": new_name}
        tree.name = new_name

    if payload.get("price") not in (None, ""):
        new_price = parse_float(payload.get("price"))
        if new_price is not None and new_price != tree.price:
            changes["price"] = {"old": tree.price, "new": new_price}
            tree.price = new_price

    new_info = (payload.get("info") or "").strip()
    if new_info and new_info != tree.info:
        changes["info"] = {"old": tree.info, "new": new_info}
        tree.info = new_info

    if payload.get("oxygen_kgs") not in (None, ""):
        new_oxygen = parse_float(payload.get("oxygen_kgs"))
        if new_oxygen is not None and new_oxygen != tree.oxygen_kgs:
            changes["oxygen_kgs"] = {"old": tree.oxygen_kgs, "new": new_oxygen}
            tree.oxygen_kgs = new_oxygen

    new_type = (payload.get("tree_type") or "").strip()
    if new_type and new_type != tree.tree_type:
        changes["tree_type"] = {"old": tree.tree_type, "new": new_type}
        tree.tree_type = new_type

    if "is_active" in payload:
        new_active = _parse_bool(payload.get("is_active"))
        if new_active != tree.is_active:
            changes["is_active"] = {"old": tree.is_active, "new": new_active}
            tree.is_active = new_active

    changes.update(_apply_optional_fields(tree, payload))

    if image is not None:
        old_key = tree.image_key
        tree.image_url = image.url
        tree.image_key = image.key
        changes["image"] = {"old": old_key, "new": image.key}
        if storage is not None and old_key and old_key != image.key:
            delete_image_quietly(storage, old_key)

    tree.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="tree.edit",
        entity_type="Tree",
        entity_id=str(tree.id),
        metadata={"name": tree.name, "changes": changes},
    )
    return tree


def deactivate_tree(s: "Session", tree: "Tree", user: "User", storage: "Storage") -> bool:
    """Soft delete; returns whether the main image was removed from storage."""
    tree.is_active = False
    tree.updated_at = datetime.utcnow()
    image_deleted = delete_image_quietly(storage, tree.image_key)
    record_event(
        s,
        actor=user,
        action="tree.delete",
        entity_type="Tree",
        entity_id=str(tree.id),
        metadata={"name": tree.name, "image_deleted": image_deleted},
    )
    return image_deleted


def list_active_trees(s: "Session", tree_type: str | None = None) -> list["Tree"]:
    from app.adoptrees.modules.catalog.models import Tree

    q = s.query(Tree).filter(Tree.is_active.is_(True))
    if tree_type:
        q = q.filter(Tree.tree_type == tree_type)
    return q.order_by(Tree.created_at.desc(), Tree.id.desc()).all()


def serialize_tree(tree: "Tree") -> dict:
    return {
        "id": tree.id,
        "name": tree.name,
        "price": tree.price,
        "info": tree.info,
        "oxygen_kgs": tree.oxygen_kgs,
        "tree_type": tree.tree_type,
        "is_active": tree.is_active,
        "image_url": tree.image_url,
        "small_image_urls": list(tree.small_image_urls or []),
        "package_quantity": tree.package_quantity,
        "package_price": tree.package_price,
        "scientific_species": tree.scientific_species,
        "species_info_available": tree.species_info_available,
        "co2": tree.co2,
        "food_security": tree.food_security,
        "economic_development": tree.economic_development,
        "co2_absorption": tree.co2_absorption,
        "environmental_protection": tree.environmental_protection,
        "local_uses": list(tree.local_uses or []),
        "created_at": iso(tree.created_at),
        "updated_at": iso(tree.updated_at),
    }
