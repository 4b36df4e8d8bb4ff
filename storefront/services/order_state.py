# storefront/services/order_state.py
"""
Order status transitions.

Every transition is a compare-and-set on the status column
(``UPDATE orders SET status = :to WHERE id = :id AND status = :from``), so two
requests racing on the same order cannot both apply it. Entering
``cancelled`` gives the reserved stock back.
"""
from __future__ import annotations
import logging
from datetime import datetime
from sqlalchemy import update
from ..extensions import db
from ..errors import InvalidTransition
from ..model import Order
from ..model.order import CANCELLED, CONFIRMED, TRANSITIONS
from . import inventory

log = logging.getLogger(__name__)


def transition(order: Order, target: str, **values) -> bool:
    """
    Move ``order`` to ``target`` inside the current transaction.

    Raises InvalidTransition when the state machine forbids the move from the
    status we loaded. Returns False when another writer changed the status
    first (the caller decides whether that is a no-op or an error).
    """
    current = order.status
    if target not in TRANSITIONS.get(current, set()):
        raise InvalidTransition(current, target)

    now = datetime.utcnow()
    if target == CONFIRMED and "paid_at" not in values:
        values["paid_at"] = now

    result = db.session.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == current)
        .values(status=target, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        log.info("order %s: lost race moving %s -> %s", order.order_number, current, target)
        db.session.refresh(order)
        return False

    if target == CANCELLED:
        for item in order.items:
            if item.variant_id is not None:
                inventory.release(item.variant_id, item.quantity)

    db.session.refresh(order)
    log.info("order %s: %s -> %s", order.order_number, current, target)
    return True
