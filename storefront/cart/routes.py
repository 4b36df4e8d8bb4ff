# storefront/cart/routes.py
from __future__ import annotations
from flask import request

from ..extensions import db
from ..model import Cart, CartItem, ProductVariant
from ..utils.api import ok, err
from ..utils.decorators import current_user_id
from . import bp

# ---- helpers ---------------------------------------------------------------


def _get_or_create_cart_by_uuid(cart_uuid: str | None) -> Cart:
    cart = None
    if cart_uuid:
        cart = Cart.query.filter_by(status="active", uuid=cart_uuid).first()
    if not cart:
        cart = Cart(status="active", user_id=current_user_id(optional=True))  # uuid autogenerates in model
        db.session.add(cart)
        db.session.flush()
    return cart


def _resolve_cart() -> Cart:
    return _get_or_create_cart_by_uuid(request.headers.get("X-Cart-Id"))


def _respond(msg, cart: Cart, status=200):
    # render first: reading the cart after commit would reopen a transaction
    db.session.flush()
    resp = ok(msg, cart.as_api(), status=status)
    resp.headers["X-Cart-Id"] = cart.uuid    # <- return UUID to client
    db.session.commit()
    return resp


def _parse_qty(v) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        raise ValueError("quantity must be an integer")


# ---- endpoints -------------------------------------------------------------

@bp.get("")
def get_cart():
    cart = _resolve_cart()
    return _respond("cart", cart)


@bp.post("")
def create_or_get_cart():
    cart = _resolve_cart()
    return _respond("cart ready", cart, status=201)


@bp.post("/items")
def add_item():
    """
    Body: { "variant_id": int, "quantity": int }
    Header: X-Cart-Id: <uuid>
    Stock is only checked here, never taken; checkout reserves it.
    """
    cart = _resolve_cart()
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return err("invalid JSON body", 400)
    variant_id = data.get("variant_id")
    try:
        qty = _parse_qty(data.get("quantity") or 1)
    except ValueError as e:
        return err(str(e), 422)

    if not variant_id:
        return err("variant_id is required", 422)
    if qty < 1:
        return err("quantity must be >= 1", 422)

    variant = db.session.get(ProductVariant, variant_id)
    if not variant or not variant.is_active or not variant.product or not variant.product.is_active:
        return err("variant not found or inactive", 404)
    if variant.stock <= 0:
        return err("out of stock", 409)

    # Upsert item, capped at what is on the shelf right now
    item = next((i for i in cart.items if i.variant_id == variant.id), None)
    if item:
        item.quantity = min(item.quantity + qty, variant.stock)
        item.price_snapshot = variant.price
    else:
        cart.items.append(CartItem(
            variant_id=variant.id,
            quantity=min(qty, variant.stock),
            price_snapshot=variant.price,
        ))

    return _respond("item added", cart, status=201)


@bp.delete("/items/<int:item_id>")
def remove_item(item_id: int):
    cart = _resolve_cart()
    item: CartItem | None = next((i for i in cart.items if i.id == item_id), None)
    if not item:
        return err("item not found in this cart", 404)

    cart.items.remove(item)
    return _respond("item removed", cart)
