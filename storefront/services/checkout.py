# storefront/services/checkout.py
"""
Checkout orchestrator: cart -> stock reservations -> pending order.

Everything happens in one database transaction. Reservations are taken line
by line in cart order; the first refusal rolls the transaction back, which
hands back every unit reserved earlier in the same attempt, and no order row
is ever written. On success the stock decrements, the order, its line items
and the emptied cart commit together.
"""
from __future__ import annotations
import logging
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from flask import current_app
from ..extensions import db
from ..errors import CheckoutError
from ..model import Cart, Order, OrderItem
from ..model.order import PENDING
from ..model.types import new_uuid
from ..utils.money import D, round_money
from . import inventory

log = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_BASE36 = string.digits + string.ascii_uppercase


@dataclass
class PlacedOrder:
    order_id: str
    order_number: str
    total: Decimal

    def as_api(self):
        return {"order_id": self.order_id, "order_number": self.order_number, "total": float(self.total)}


def generate_order_number(prefix: str | None = None, now: datetime | None = None) -> str:
    """e.g. ORD-20260220-K3F9QZ"""
    prefix = prefix or current_app.config.get("ORDER_NUMBER_PREFIX", "ORD")
    stamp = (now or datetime.utcnow()).strftime("%Y%m%d")
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{prefix}-{stamp}-{suffix}"


def _unused_order_number() -> str:
    number = generate_order_number()
    while db.session.query(Order.id).filter(Order.order_number == number).first():
        number = generate_order_number()
    return number


def shipping_cost_for(subtotal: Decimal) -> Decimal:
    cfg = current_app.config
    threshold = cfg.get("FREE_SHIPPING_THRESHOLD")
    if threshold not in (None, "") and subtotal >= D(threshold):
        return Decimal("0.00")
    return round_money(cfg.get("SHIPPING_FLAT_FEE") or 0)


def valid_email(value) -> bool:
    return bool(value) and bool(_EMAIL_RE.match(str(value).strip()))


def place_order(cart_uuid: str, shipping: dict, guest_email: str | None = None,
                user_id: str | None = None, notes: str | None = None,
                is_whatsapp_order: bool = False) -> PlacedOrder:
    """
    shipping: {name, phone, address, city, country}
    Raises CheckoutError (empty_cart, email_required, unknown_variant,
    insufficient_stock). Nothing is persisted when it raises.
    """
    try:
        cart = None
        if cart_uuid:
            cart = Cart.query.filter_by(uuid=cart_uuid, status="active").first()
        if not cart or not cart.items:
            raise CheckoutError("empty_cart", "Cart is empty")

        if not user_id and not valid_email(guest_email):
            raise CheckoutError("email_required", "A valid email is required for guest checkout")

        for it in cart.items:
            v = it.variant
            if not v or not v.is_active or not v.product or not v.product.is_active:
                raise CheckoutError(
                    "unknown_variant",
                    f"variant {it.variant_id} is no longer available",
                    variant_id=it.variant_id,
                )

        # reserve before anything is written
        for it in cart.items:
            v = it.variant
            if not inventory.reserve(v.id, it.quantity):
                left = inventory.available(v.id)
                raise CheckoutError(
                    "insufficient_stock",
                    f"{v.label} only has {left} in stock",
                    item=v.label,
                    variant_id=v.id,
                    available=left,
                )

        lines = []
        subtotal = Decimal("0")
        for it in cart.items:
            v = it.variant
            unit_price = round_money(v.price)
            line_subtotal = round_money(unit_price * it.quantity)
            subtotal += line_subtotal
            lines.append(OrderItem(
                variant_id=v.id,
                product_name=v.product.name,
                variant_size=v.size,
                variant_color=v.color,
                sku=v.sku,
                quantity=it.quantity,
                unit_price=unit_price,
                subtotal=line_subtotal,
            ))

        subtotal = round_money(subtotal)
        shipping_cost = shipping_cost_for(subtotal)
        discount = Decimal("0.00")
        total = round_money(max(Decimal("0"), subtotal + shipping_cost - discount))

        order_id = new_uuid()
        order_number = _unused_order_number()
        order = Order(
            id=order_id,
            order_number=order_number,
            user_id=user_id,
            guest_email=(guest_email or "").strip() or None,
            status=PENDING,
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            discount=discount,
            total=total,
            currency=current_app.config.get("CURRENCY", "KES"),
            shipping_name=shipping.get("name"),
            shipping_phone=shipping.get("phone"),
            shipping_address=shipping.get("address"),
            shipping_city=shipping.get("city"),
            shipping_country=shipping.get("country"),
            notes=notes,
            is_whatsapp_order=bool(is_whatsapp_order),
            items=lines,
        )
        db.session.add(order)

        # because of cascade="all, delete-orphan", clearing the list deletes rows
        cart.items.clear()

        db.session.commit()
    except CheckoutError as e:
        db.session.rollback()
        log.info("checkout refused for cart %s: %s (%s)", cart_uuid, e.code, e.message)
        raise
    except Exception:
        db.session.rollback()
        log.exception("checkout failed for cart %s", cart_uuid)
        raise

    # no attribute access after commit: a reload would reopen a write transaction
    log.info("order %s placed, total=%s", order_number, total)
    return PlacedOrder(order_id=str(order_id), order_number=order_number, total=total)
