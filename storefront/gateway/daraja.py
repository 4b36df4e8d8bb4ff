# storefront/gateway/daraja.py
"""
Daraja (M-Pesa / Safaricom) STK push provider.

Flow:
  1. POST /payments/initialize -> initialize() -> STK push prompt on the payer's phone
  2. payer approves (or not) on the phone
  3. Daraja POSTs the result to the callback URL -> handle_webhook()
  4. if no callback shows up, POST /payments/verify (or `flask reconcile-payments`)
     polls stkpushquery through verify()
"""
from __future__ import annotations
import base64
import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timedelta

import requests

from .base import (
    FAILED,
    PENDING,
    SUCCESS,
    InvalidPaymentRequest,
    PaymentInitResult,
    PaymentProvider,
    PaymentVerifyResult,
    ProviderUnavailable,
    WebhookResult,
)

log = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_URL = "https://api.safaricom.co.ke"

# refresh the OAuth token this many seconds before Daraja expires it
TOKEN_SLACK_SECONDS = 60


def normalize_msisdn(phone: str) -> str:
    """0712345678 / +254712345678 / 712345678 -> 254712345678"""
    digits = "".join(ch for ch in str(phone or "") if ch.isdigit())
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif len(digits) == 9:
        digits = "254" + digits
    if len(digits) != 12 or not digits.startswith("254"):
        raise InvalidPaymentRequest(f"invalid phone number: {phone}")
    return digits


def _timestamp() -> str:
    # Daraja wants East Africa Time, YYYYMMDDHHMMSS
    return (datetime.utcnow() + timedelta(hours=3)).strftime("%Y%m%d%H%M%S")


class DarajaProvider(PaymentProvider):
    name = "daraja"

    def __init__(self, consumer_key, consumer_secret, shortcode, passkey,
                 env="sandbox", webhook_secret=None, timeout=15.0, session=None):
        self.consumer_key = consumer_key or ""
        self.consumer_secret = consumer_secret or ""
        self.shortcode = shortcode or ""
        self.passkey = passkey or ""
        self.base_url = PRODUCTION_URL if env == "production" else SANDBOX_URL
        self.webhook_secret = webhook_secret or None
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token = None
        self._token_expires_at = 0.0

    @property
    def signs_webhooks(self):
        return bool(self.webhook_secret)

    @classmethod
    def from_config(cls, config, session=None):
        return cls(
            consumer_key=config.get("PAYMENT_CONSUMER_KEY"),
            consumer_secret=config.get("PAYMENT_CONSUMER_SECRET"),
            shortcode=config.get("PAYMENT_SHORTCODE"),
            passkey=config.get("PAYMENT_PASSKEY"),
            env=config.get("PAYMENT_ENV", "sandbox"),
            webhook_secret=config.get("PAYMENT_WEBHOOK_SECRET"),
            timeout=config.get("PAYMENT_HTTP_TIMEOUT", 15.0),
            session=session,
        )

    # ---- transport -----------------------------------------------------------
    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        if not self.consumer_key or not self.consumer_secret:
            raise ProviderUnavailable("Daraja credentials are not configured")

        credentials = base64.b64encode(
            f"{self.consumer_key}:{self.consumer_secret}".encode()
        ).decode()
        try:
            res = self.session.get(
                f"{self.base_url}/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                headers={"Authorization": f"Basic {credentials}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderUnavailable(f"Daraja: token request failed: {e}") from e
        if res.status_code != 200:
            raise ProviderUnavailable(f"Daraja: failed to get access token (HTTP {res.status_code})")
        try:
            data = res.json()
            token = data["access_token"]
            ttl = int(data.get("expires_in") or 3599)
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderUnavailable("Daraja: malformed token response") from e

        self._token = token
        self._token_expires_at = time.monotonic() + max(ttl - TOKEN_SLACK_SECONDS, 0)
        return token

    def _password(self, timestamp: str) -> str:
        return base64.b64encode(f"{self.shortcode}{self.passkey}{timestamp}".encode()).decode()

    def _post(self, path: str, body: dict):
        token = self._access_token()
        try:
            res = self.session.post(
                f"{self.base_url}{path}",
                json=body,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderUnavailable(f"Daraja: {path} failed: {e}") from e
        if res.status_code >= 500:
            log.warning("daraja %s returned HTTP %s", path, res.status_code)
        if res.status_code == 401:
            # token revoked early; next call fetches a new one
            self._token = None
            raise ProviderUnavailable("Daraja: access token rejected")
        try:
            data = res.json()
        except ValueError:
            data = {}
        return res.status_code, data

    # ---- PaymentProvider -----------------------------------------------------
    def initialize(self, order_ref, amount, phone, email, name, callback_url):
        msisdn = normalize_msisdn(phone)
        whole_units = max(1, -(-int(amount) // 100))  # cents -> KES, rounded up
        timestamp = _timestamp()
        body = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": whole_units,
            "PartyA": msisdn,
            "PartyB": self.shortcode,
            "PhoneNumber": msisdn,
            "CallBackURL": callback_url,
            "AccountReference": order_ref,
            "TransactionDesc": f"Order {order_ref}",
        }
        status_code, data = self._post("/mpesa/stkpush/v1/processrequest", body)

        if status_code == 200 and str(data.get("ResponseCode")) == "0" and data.get("CheckoutRequestID"):
            return PaymentInitResult(
                payment_ref=data["CheckoutRequestID"],
                message=data.get("CustomerMessage") or "STK push sent. Check your phone.",
            )

        reason = data.get("errorMessage") or data.get("ResponseDescription") or f"HTTP {status_code}"
        if status_code >= 500 or not data:
            raise ProviderUnavailable(f"Daraja STK push failed: {reason}")
        raise InvalidPaymentRequest(f"Daraja STK push rejected: {reason}")

    def verify(self, payment_ref):
        timestamp = _timestamp()
        status_code, data = self._post("/mpesa/stkpushquery/v1/query", {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": payment_ref,
        })
        if status_code >= 500 and not data:
            raise ProviderUnavailable(f"Daraja: query failed (HTTP {status_code})")

        # "still processing" comes back as an errorCode without ResultCode
        result_code = data.get("ResultCode")
        if result_code is None:
            status = PENDING
        elif str(result_code) == "0":
            status = SUCCESS
        else:
            status = FAILED
        return PaymentVerifyResult(status=status, raw=data, transaction_id=payment_ref)

    def _signature_ok(self, raw: bytes, signature: str | None) -> bool:
        if not self.webhook_secret:
            return True
        if not signature:
            return False
        presented = signature.strip()
        if presented.lower().startswith("sha256="):
            presented = presented[7:]
        expected = hmac.new(self.webhook_secret.encode(), raw, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, presented.lower())

    def handle_webhook(self, payload, signature=None):
        if isinstance(payload, (dict, list)):
            body, raw = payload, None
        else:
            raw = payload.encode() if isinstance(payload, str) else bytes(payload or b"")
            body = None

        if self.webhook_secret and (raw is None or not self._signature_ok(raw, signature)):
            log.warning("daraja callback rejected: bad or missing signature")
            return WebhookResult(order_ref="", status=PENDING)

        try:
            if body is None:
                body = json.loads(raw.decode("utf-8"))
            callback = body["Body"]["stkCallback"]
            checkout_id = str(callback.get("CheckoutRequestID") or "")
            items = (callback.get("CallbackMetadata") or {}).get("Item") or []
            account_ref = next(
                (str(i["Value"]) for i in items
                 if isinstance(i, dict) and i.get("Name") == "AccountReference" and i.get("Value") is not None),
                None,
            )
            result_code = callback.get("ResultCode")
            if result_code is None:
                status = PENDING
            else:
                status = SUCCESS if int(result_code) == 0 else FAILED
        except (ValueError, TypeError, KeyError, AttributeError, UnicodeDecodeError) as e:
            log.warning("daraja callback could not be decoded: %s", e)
            return WebhookResult(order_ref="", status=PENDING)

        return WebhookResult(
            order_ref=account_ref or checkout_id,
            status=status,
            payment_ref=checkout_id or None,
            raw=body,
        )
