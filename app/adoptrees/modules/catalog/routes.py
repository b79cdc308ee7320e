from __future__ import annotations

from flask import Blueprint, request

from app.adoptrees.constants import USER_TYPES
from app.adoptrees.db import db_session
from app.adoptrees.modules.catalog.models import Tree
from app.adoptrees.modules.catalog.service import list_active_trees, serialize_tree
from app.adoptrees.utils import fail, ok

bp = Blueprint("catalog", __name__)


@bp.get("/trees")
def trees_list():
    tree_type = (request.args.get("type") or "").strip() or None
    if tree_type and tree_type not in USER_TYPES:
        return fail("Invalid tree type", 400)
    trees = list_active_trees(db_session(), tree_type)
    return ok([serialize_tree(t) for t in trees], count=len(trees))


@bp.get("/trees/<int:tree_id>")
def tree_detail(tree_id: int):
    tree = db_session().get(Tree, tree_id)
    if not tree or not tree.is_active:
        return fail("Tree not found", 404)
    return ok(serialize_tree(tree))
