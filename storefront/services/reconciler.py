# storefront/services/reconciler.py
"""
Webhook reconciler: applies an asynchronous payment outcome to its order.

Providers deliver at least once, possibly late and possibly after a
``verify`` poll already settled the order, so every path here is a no-op once
the order has left ``payment_pending``. ``handle_webhook`` never raises; the
HTTP layer acknowledges the callback whatever happens.

A success callback the provider did not authenticate is only applied once
``provider.verify`` agrees, so a forged POST cannot mark an order paid.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from ..extensions import db
from ..model import Order
from ..model.order import CANCELLED, CONFIRMED, PAID, PAYMENT_PENDING
from ..gateway import FAILED, PENDING, SUCCESS, PaymentError, get_payment_provider
from . import order_state

log = logging.getLogger(__name__)

# outcome labels
APPLIED = "applied"
DUPLICATE = "duplicate"
IGNORED = "ignored"
UNKNOWN_ORDER = "unknown_order"
ERROR = "error"


@dataclass
class ReconcileOutcome:
    outcome: str
    order_ref: str = ""
    payment_status: str | None = None
    order_status: str | None = None


def find_order(order_ref: str, payment_ref: str | None = None) -> Order | None:
    """By order number first, then by the provider's payment reference."""
    if order_ref:
        order = Order.query.filter_by(order_number=order_ref).first()
        if order:
            return order
    for ref in (payment_ref, order_ref):
        if ref:
            order = Order.query.filter_by(payment_ref=ref).first()
            if order:
                return order
    return None


def apply_payment_result(order: Order, payment_status: str) -> str:
    """
    Transition ``order`` for a provider outcome inside the current
    transaction. Returns one of APPLIED, DUPLICATE, IGNORED.
    """
    current = order.status

    if payment_status == SUCCESS:
        if current in PAID:
            return DUPLICATE
        if current != PAYMENT_PENDING:
            log.warning("order %s: payment success reported while %s; not applied",
                        order.order_number, current)
            return IGNORED
        return APPLIED if order_state.transition(order, CONFIRMED) else DUPLICATE

    if payment_status == FAILED:
        if current == CANCELLED:
            return DUPLICATE
        if current != PAYMENT_PENDING:
            log.warning("order %s: payment failure reported while %s; not applied",
                        order.order_number, current)
            return IGNORED
        return APPLIED if order_state.transition(order, CANCELLED) else DUPLICATE

    return IGNORED


def _confirmed_status(provider, order) -> str:
    """Ask the provider about an unsigned success callback; its answer wins."""
    order_number, payment_ref = order.order_number, order.payment_ref
    # no transaction stays open across the provider call
    db.session.commit()
    if not payment_ref:
        return PENDING
    try:
        verified = provider.verify(payment_ref).status
    except PaymentError as e:
        log.warning("order %s: callback not confirmed, provider error: %s", order_number, e)
        return PENDING
    if verified != SUCCESS:
        log.warning("order %s: callback reported success, provider says %s", order_number, verified)
    return verified


def handle_webhook(payload, signature: str | None) -> ReconcileOutcome:
    order_ref = ""
    try:
        provider = get_payment_provider()
        result = provider.handle_webhook(payload, signature)
        order_ref = result.order_ref

        order = find_order(result.order_ref, result.payment_ref)
        if not order:
            log.warning("payment callback for unknown order ref=%r status=%s", result.order_ref, result.status)
            db.session.rollback()
            return ReconcileOutcome(UNKNOWN_ORDER, order_ref, result.status)

        status = result.status
        if status == SUCCESS and order.status == PAYMENT_PENDING and not provider.signs_webhooks:
            status = _confirmed_status(provider, order)

        outcome = apply_payment_result(order, status)
        order_number, order_status = order.order_number, order.status
        db.session.commit()
        log.info("payment callback order=%s status=%s -> %s (%s)",
                 order_number, status, order_status, outcome)
        return ReconcileOutcome(outcome, order_ref, status, order_status)
    except Exception:
        db.session.rollback()
        log.exception("payment callback processing failed (ref=%r)", order_ref)
        return ReconcileOutcome(ERROR, order_ref)
