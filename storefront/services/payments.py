# storefront/services/payments.py
from __future__ import annotations
import logging
from datetime import datetime, timedelta
from flask import current_app
from ..extensions import db
from ..errors import OrderNotFound, OrderNotPayable
from ..model import Order
from ..model.order import CANCELLED, CONFIRMED, PENDING, PAYMENT_PENDING
from ..model.types import as_uuid
from ..gateway import PENDING as PAY_PENDING
from ..gateway import get_payment_provider, PaymentError, PaymentInitResult
from ..utils.money import to_minor_units
from . import order_state
from .reconciler import APPLIED, apply_payment_result

log = logging.getLogger(__name__)


def get_order(order_id) -> Order:
    oid = as_uuid(order_id)
    order = db.session.get(Order, oid) if oid else None
    if not order:
        raise OrderNotFound(order_id)
    return order


def callback_url() -> str:
    cfg = current_app.config
    if cfg.get("PAYMENT_CALLBACK_URL"):
        return cfg["PAYMENT_CALLBACK_URL"]
    return cfg.get("PUBLIC_BASE_URL", "").rstrip("/") + "/payments/webhook"


def initiate_payment(order_id, phone: str, email: str, name: str) -> PaymentInitResult:
    """
    Ask the provider to collect the order total, then record the attempt.

    Provider errors propagate and leave the order in ``pending`` so the client
    can simply try again. The ``payment_pending`` state is committed locally
    before the provider has confirmed anything.
    """
    order = get_order(order_id)
    if order.status != PENDING:
        status = order.status
        db.session.rollback()
        raise OrderNotPayable(status)

    provider = get_payment_provider()
    order_number = order.order_number
    amount = to_minor_units(order.total)
    # close the read transaction; nothing is held while the provider call is in flight
    db.session.commit()

    result = provider.initialize(
        order_ref=order_number,
        amount=amount,
        phone=phone,
        email=email,
        name=name,
        callback_url=callback_url(),
    )

    order = get_order(order_id)
    try:
        current = order.status
        moved = current == PENDING and order_state.transition(
            order, PAYMENT_PENDING,
            payment_provider=provider.name,
            payment_ref=result.payment_ref,
        )
        if not moved:
            current = order.status
            db.session.rollback()
            log.warning("order %s: payment %s initiated but order is now %s",
                        order_number, result.payment_ref, current)
            raise OrderNotPayable(current)
        db.session.commit()
    except OrderNotPayable:
        raise
    except Exception:
        db.session.rollback()
        raise

    log.info("order %s: payment initiated via %s ref=%s", order_number, provider.name, result.payment_ref)
    return result


def verify_payment(order_id) -> tuple[str, str]:
    """Poll the provider for an order's payment. Returns (payment_status, order_status)."""
    order = get_order(order_id)
    order_number, payment_ref = order.order_number, order.payment_ref
    if not payment_ref:
        status = order.status
        db.session.rollback()
        raise OrderNotPayable(status, "Order has no payment to verify")
    db.session.commit()

    result = get_payment_provider().verify(payment_ref)
    try:
        order = get_order(order_id)
        outcome = apply_payment_result(order, result.status)
        order_status = order.status
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    log.info("order %s: verify -> %s (%s)", order_number, result.status, outcome)
    return result.status, order_status


def reconcile_pending(older_than_minutes: int = 10, expire_after_minutes: int | None = None) -> dict:
    """
    Fallback for callbacks that never arrived: poll every ``payment_pending``
    order untouched for ``older_than_minutes`` and apply the answer. Orders
    the provider still reports as pending after ``expire_after_minutes`` are
    cancelled, which returns their stock.
    """
    now = datetime.utcnow()
    cutoff = now - timedelta(minutes=older_than_minutes)
    expire_cutoff = now - timedelta(minutes=expire_after_minutes) if expire_after_minutes else None

    stale = (db.session.query(Order.id, Order.order_number, Order.payment_ref, Order.updated_at)
             .filter(Order.status == PAYMENT_PENDING, Order.updated_at <= cutoff)
             .order_by(Order.created_at.asc())
             .all())
    # provider calls happen outside any transaction
    db.session.commit()

    counts = {"checked": 0, "confirmed": 0, "cancelled": 0, "expired": 0, "pending": 0, "errors": 0}
    provider = get_payment_provider()
    for order_id, order_number, payment_ref, last_touched in stale:
        counts["checked"] += 1
        try:
            status = provider.verify(payment_ref).status if payment_ref else PAY_PENDING
        except PaymentError as e:
            log.warning("order %s: verify failed: %s", order_number, e)
            counts["errors"] += 1
            status = PAY_PENDING

        try:
            order = get_order(order_id)
            outcome = apply_payment_result(order, status)
            if outcome == APPLIED:
                counts["confirmed" if order.status == CONFIRMED else "cancelled"] += 1
            elif expire_cutoff and last_touched <= expire_cutoff and order.status == PAYMENT_PENDING:
                if order_state.transition(order, CANCELLED):
                    counts["expired"] += 1
                    log.info("order %s: payment expired after %s minutes", order_number, expire_after_minutes)
            else:
                counts["pending"] += 1
            db.session.commit()
        except Exception:
            db.session.rollback()
            counts["errors"] += 1
            log.exception("order %s: reconcile failed", order_number)
    return counts
