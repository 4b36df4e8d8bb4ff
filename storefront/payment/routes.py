# storefront/payment/routes.py
from flask import request, current_app

from ..errors import OrderNotFound, OrderNotPayable
from ..gateway import InvalidPaymentRequest, ProviderUnavailable
from ..services import payments, reconciler
from ..utils.api import ok, err
from ..utils.net import get_client_ip, webhook_signature
from . import bp


def _fields(data, *names):
    values = {n: str(data.get(n) or "").strip() for n in names}
    missing = [n for n, v in values.items() if not v]
    return values, missing


@bp.post("/initialize")
def initialize():
    """
    Body: { "order_id": uuid, "phone": str, "email": str, "name": str }
    The order must still be ``pending``; on success it moves to ``payment_pending``.
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return err("invalid JSON body", 400)
    values, missing = _fields(data, "order_id", "phone", "email", "name")
    if missing:
        return err(f"missing fields: {', '.join(missing)}", 400)
    if len(values["phone"]) < 9:
        return err("phone is too short", 400)
    if "@" not in values["email"]:
        return err("email is invalid", 400)

    try:
        result = payments.initiate_payment(values["order_id"], values["phone"], values["email"], values["name"])
    except OrderNotFound as e:
        return err(e.message, 404)
    except OrderNotPayable as e:
        return err(e.message, 400, e.data)
    except InvalidPaymentRequest as e:
        current_app.logger.info("payment rejected for order %s: %s", values["order_id"], e)
        return err(str(e), 400, {"code": e.code})
    except ProviderUnavailable as e:
        current_app.logger.error("payment provider unavailable for order %s: %s", values["order_id"], e)
        return err("payment provider unavailable, please retry", 502, {"code": e.code})

    return ok("payment initiated", result.as_api())


@bp.post("/verify")
def verify():
    """Body: { "order_id": uuid } -- poll the provider when no callback came in."""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return err("invalid JSON body", 400)
    values, missing = _fields(data, "order_id")
    if missing:
        return err("order_id is required", 400)

    try:
        payment_status, order_status = payments.verify_payment(values["order_id"])
    except OrderNotFound as e:
        return err(e.message, 404)
    except OrderNotPayable as e:
        return err(e.message, 400, e.data)
    except ProviderUnavailable as e:
        current_app.logger.error("payment verify failed for order %s: %s", values["order_id"], e)
        return err("payment provider unavailable, please retry", 502, {"code": e.code})

    return ok("payment status", {"payment_status": payment_status, "order_status": order_status})


@bp.post("/webhook")
def webhook():
    """
    Provider callback. Always 200 {received: true}: a non-2xx answer only
    makes the provider retry, it never fixes anything on our side.
    """
    outcome = reconciler.handle_webhook(request.get_data(cache=False), webhook_signature())
    current_app.logger.info(
        "payment webhook from %s: ref=%r outcome=%s", get_client_ip(), outcome.order_ref, outcome.outcome
    )
    return ok("received", {"received": True})
