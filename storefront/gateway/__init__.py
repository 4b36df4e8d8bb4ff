# storefront/gateway/__init__.py
"""
The ONE place that decides which payment provider is used.

``PAYMENT_PROVIDER`` picks an entry from ``PROVIDERS``; the instance lives on
``app.extensions["payment"]`` and is fetched with ``get_payment_provider()``.
"""
from flask import current_app

from .base import (
    FAILED,
    PENDING,
    SUCCESS,
    InvalidPaymentRequest,
    PaymentError,
    PaymentInitResult,
    PaymentProvider,
    PaymentVerifyResult,
    ProviderUnavailable,
    WebhookResult,
)
from .daraja import DarajaProvider

PROVIDERS = {
    "daraja": DarajaProvider,
}


def init_payment(app):
    name = (app.config.get("PAYMENT_PROVIDER") or "daraja").strip().lower()
    try:
        cls = PROVIDERS[name]
    except KeyError:
        raise RuntimeError(f"unknown PAYMENT_PROVIDER {name!r}; expected one of {sorted(PROVIDERS)}")
    app.extensions["payment"] = cls.from_config(app.config)


def get_payment_provider() -> PaymentProvider:
    return current_app.extensions["payment"]


__all__ = [
    "FAILED",
    "PENDING",
    "SUCCESS",
    "InvalidPaymentRequest",
    "PaymentError",
    "PaymentInitResult",
    "PaymentProvider",
    "PaymentVerifyResult",
    "ProviderUnavailable",
    "WebhookResult",
    "DarajaProvider",
    "PROVIDERS",
    "init_payment",
    "get_payment_provider",
]
