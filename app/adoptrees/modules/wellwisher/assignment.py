"""
Well-wisher assignment.

New orders go to the active well-wisher currently holding the fewest orders
(ties go to the earliest-created account). When a well-wisher is removed their
orders are dealt round-robin across whoever is left.
"""
from __future__ import annotations

import logging
from itertools import cycle
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _wellwisher_ids(s: "Session", *, exclude: int | None = None) -> list[int]:
    from app.adoptrees.models import User

    q = s.query(User.id).filter(User.role == "wellwisher", User.is_active.is_(True))
    if exclude is not None:
        q = q.filter(User.id != exclude)
    return [row[0] for row in q.order_by(User.id.asc()).all()]


def assigned_order_counts(s: "Session") -> dict[int, int]:
    from app.adoptrees.modules.orders.models import Order

    rows = (
        s.query(Order.assigned_wellwisher_id, func.count(Order.id))
        .filter(Order.assigned_wellwisher_id.isnot(None))
        .group_by(Order.assigned_wellwisher_id)
        .all()
    )
    return {ww_id: count for ww_id, count in rows}


def assign_wellwisher_equally(s: "Session") -> int | None:
    """Return the id of the well-wisher with the fewest assigned orders, or None if there are none."""
    try:
        # savepoint keeps the outer transaction usable if the counting query fails
        with s.begin_nested():
            ids = _wellwisher_ids(s)
            if not ids:
                return None
            counts = assigned_order_counts(s)
    except SQLAlchemyError as e:
        logger.error("Equal well-wisher assignment failed, falling back to first well-wisher: %s", e)
        try:
            ids = _wellwisher_ids(s)
        except SQLAlchemyError:
            logger.exception("Fallback well-wisher lookup failed")
            return None
        return ids[0] if ids else None
    # min() keeps the first of equal counts, so ties resolve to the lowest id
    return min(ids, key=lambda ww_id: counts.get(ww_id, 0))


def reassign_orders_round_robin(s: "Session", from_wellwisher_id: int) -> tuple[int, int]:
    """
    Move every order held by `from_wellwisher_id` to the remaining well-wishers in turn.
    Returns (orders_reassigned, orders_left_unassigned).
    """
    from app.adoptrees.modules.orders.models import Order

    orders = (
        s.query(Order)
        .filter(Order.assigned_wellwisher_id == from_wellwisher_id)
        .order_by(Order.created_at.asc(), Order.id.asc())
        .all()
    )
    if not orders:
        return 0, 0

    remaining = _wellwisher_ids(s, exclude=from_wellwisher_id)
    if not remaining:
        for order in orders:
            order.assigned_wellwisher_id = None
        logger.warning(
            "No well-wishers left to take over %d orders from well-wisher %s; orders left unassigned",
            len(orders),
            from_wellwisher_id,
        )
        return 0, len(orders)

    for order, ww_id in zip(orders, cycle(remaining)):
        order.assigned_wellwisher_id = ww_id
    return len(orders), 0
