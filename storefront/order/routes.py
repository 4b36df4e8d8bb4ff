# storefront/order/routes.py
from flask import request, current_app
from flask_jwt_extended import jwt_required

from ..extensions import db
from ..errors import CheckoutError, InvalidTransition, OrderNotFound
from ..model import Order
from ..model.order import CANCELLED, DELIVERED, PROCESSING, REFUNDED, SHIPPED
from ..services import checkout, order_state
from ..services.payments import get_order
from ..utils.api import ok, err
from ..utils.decorators import current_user_id, is_admin, role_required
from . import bp

_REQUIRED_SHIPPING = ("shipping_name", "shipping_phone", "shipping_address", "shipping_city")
# payment states are only ever set by the payment flow
_ADMIN_TARGETS = (PROCESSING, SHIPPED, DELIVERED, REFUNDED, CANCELLED)


def _text(value):
    if value is None:
        return None
    return str(value).strip() or None


def _can_see(order: Order, uid) -> bool:
    if order.user_id is None:
        return True             # guest order, addressed by its unguessable id
    return uid is not None and (order.user_id == uid or is_admin())


def _can_cancel(order: Order, uid) -> bool:
    if uid is None:
        return False
    return is_admin() or (order.user_id is not None and order.user_id == uid)


@bp.post("")
def create_order():
    """
    Body: {
      "cart_id": "<cart uuid>",
      "shipping_name", "shipping_phone", "shipping_address", "shipping_city": str,
      "shipping_country": str (default "Kenya"),
      "notes": str, "guest_email": str (required without a token),
      "is_whatsapp_order": bool (default false)
    }
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return err("invalid JSON body", 400)
    cart_id = (data.get("cart_id") or "").strip() if isinstance(data.get("cart_id"), str) else ""
    if not cart_id:
        return err("cart_id is required", 400)

    missing = [f for f in _REQUIRED_SHIPPING if not str(data.get(f) or "").strip()]
    if missing:
        return err(f"missing fields: {', '.join(missing)}", 400)
    is_whatsapp_order = data.get("is_whatsapp_order", False)
    if not isinstance(is_whatsapp_order, bool):
        return err("is_whatsapp_order must be a boolean", 400)

    shipping = {
        "name": str(data["shipping_name"]).strip(),
        "phone": str(data["shipping_phone"]).strip(),
        "address": str(data["shipping_address"]).strip(),
        "city": str(data["shipping_city"]).strip(),
        "country": str(data.get("shipping_country") or "Kenya").strip(),
    }

    try:
        placed = checkout.place_order(
            cart_id,
            shipping,
            guest_email=_text(data.get("guest_email")),
            user_id=current_user_id(optional=True),
            notes=_text(data.get("notes")),
            is_whatsapp_order=is_whatsapp_order,
        )
    except CheckoutError as e:
        msg = f"insufficient_stock: {e.message}" if e.code == "insufficient_stock" else e.message
        return err(msg, 400, {"code": e.code, **e.data})

    resp = ok("order created", placed.as_api(), status=201)
    resp.headers["X-Order-Id"] = placed.order_id
    return resp


@bp.get("")
@jwt_required()
def list_orders():
    uid = current_user_id(optional=False)
    q = (Order.query.filter(Order.user_id == uid)
         .order_by(Order.created_at.desc())
         .limit(50))
    return ok("orders", {"items": [o.as_api(with_items=False) for o in q.all()]})


@bp.get("/<order_id>")
def get_one(order_id):
    try:
        order = get_order(order_id)
    except OrderNotFound as e:
        return err(e.message, 404)
    if not _can_see(order, current_user_id(optional=True)):
        return err("order not found", 404)
    return ok("order", order.as_api())


@bp.post("/<order_id>/cancel")
def cancel(order_id):
    try:
        order = get_order(order_id)
    except OrderNotFound as e:
        return err(e.message, 404)
    uid = current_user_id(optional=True)
    if not _can_cancel(order, uid):
        return err("Forbidden", 403)

    try:
        if not order_state.transition(order, CANCELLED):
            current = order.status
            db.session.rollback()
            return err(f"order changed to {current}, try again", 409)
        body = order.as_api()
        db.session.commit()
    except InvalidTransition as e:
        db.session.rollback()
        return err(e.message, 409, e.data)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("order %s cancelled by %s", body["order_number"], uid)
    return ok("order cancelled", body)


@bp.patch("/<order_id>/status")
@role_required("admin", message="Only admins can change order status")
def set_status(order_id):
    """Body: { "status": "processing" | "shipped" | "delivered" | "refunded" | "cancelled" }"""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return err("invalid JSON body", 400)
    target = str(data.get("status") or "").strip().lower()
    if target not in _ADMIN_TARGETS:
        return err(f"status must be one of {', '.join(_ADMIN_TARGETS)}", 422)

    try:
        order = get_order(order_id)
    except OrderNotFound as e:
        return err(e.message, 404)

    try:
        if not order_state.transition(order, target):
            current = order.status
            db.session.rollback()
            return err(f"order changed to {current}, try again", 409)
        body = order.as_api()
        db.session.commit()
    except InvalidTransition as e:
        db.session.rollback()
        return err(e.message, 409, e.data)
    except Exception:
        db.session.rollback()
        raise

    return ok("order status updated", body)
