# storefront/gateway/base.py
"""
Payment provider interface.

Routes and services only ever talk to ``PaymentProvider``; the wire format of
a given mobile-money API lives in its own module under this package.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

SUCCESS = "success"
FAILED = "failed"
PENDING = "pending"
PAYMENT_STATUSES = (SUCCESS, FAILED, PENDING)


class PaymentError(Exception):
    code = "payment_error"


class ProviderUnavailable(PaymentError):
    """Upstream call failed (network, timeout, 5xx, auth)."""
    code = "provider_unavailable"


class InvalidPaymentRequest(PaymentError):
    """The provider rejected the inputs."""
    code = "invalid_request"


@dataclass
class PaymentInitResult:
    payment_ref: str
    message: str
    redirect_url: str | None = None

    def as_api(self):
        data = {"payment_ref": self.payment_ref, "message": self.message}
        if self.redirect_url:
            data["redirect_url"] = self.redirect_url
        return data


@dataclass
class PaymentVerifyResult:
    status: str
    raw: Any = None
    transaction_id: str | None = None
    amount_paid: int | None = None


@dataclass
class WebhookResult:
    order_ref: str
    status: str
    payment_ref: str | None = None
    raw: Any = field(default=None, repr=False)


class PaymentProvider(ABC):
    name = "base"
    # True when handle_webhook authenticates the sender; unsigned success
    # callbacks are confirmed through verify() before they are applied
    signs_webhooks = False

    @abstractmethod
    def initialize(self, order_ref: str, amount: int, phone: str, email: str,
                   name: str, callback_url: str) -> PaymentInitResult:
        """Start an out-of-band payment. ``amount`` is in minor units (cents)."""

    @abstractmethod
    def verify(self, payment_ref: str) -> PaymentVerifyResult:
        """Poll the provider for the outcome of ``payment_ref``."""

    @abstractmethod
    def handle_webhook(self, payload, signature: str | None) -> WebhookResult:
        """Decode an inbound callback. Must not raise on malformed input."""
