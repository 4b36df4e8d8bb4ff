"""Pytest fixtures for storefront tests."""

import json
from decimal import Decimal
from itertools import count

import pytest
from flask_jwt_extended import create_access_token

from storefront import create_app
from storefront.extensions import db
from storefront.gateway import (
    PENDING,
    PaymentInitResult,
    PaymentProvider,
    PaymentVerifyResult,
    WebhookResult,
)
from storefront.model import Cart, CartItem, Order, Product, ProductVariant

JWT_TEST_SECRET = "test-secret-that-is-long-enough-for-hs256-signing"


class FakeProvider(PaymentProvider):
    """In-memory provider; webhook payloads are {"order_ref": ..., "status": ...}.

    Its callbacks count as authenticated unless a test clears ``signs_webhooks``.
    """

    name = "fake"
    signs_webhooks = True

    def __init__(self):
        self._refs = count(1)
        self.initialized = []
        self.verify_status = {}
        self.fail_with = None

    def initialize(self, order_ref, amount, phone, email, name, callback_url):
        if self.fail_with is not None:
            raise self.fail_with
        ref = f"ws_CO_{next(self._refs):06d}"
        self.initialized.append({
            "order_ref": order_ref, "amount": amount, "phone": phone,
            "callback_url": callback_url, "payment_ref": ref,
        })
        return PaymentInitResult(payment_ref=ref, message="STK push sent. Check your phone.")

    def verify(self, payment_ref):
        if self.fail_with is not None:
            raise self.fail_with
        return PaymentVerifyResult(status=self.verify_status.get(payment_ref, PENDING))

    def handle_webhook(self, payload, signature):
        try:
            body = json.loads(payload)
            return WebhookResult(order_ref=body["order_ref"], status=body["status"])
        except (ValueError, TypeError, KeyError):
            return WebhookResult(order_ref="", status=PENDING)


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30, "check_same_thread": False}},
        "JWT_SECRET_KEY": JWT_TEST_SECRET,
        "ORDER_NUMBER_PREFIX": "ORD",
        "SHIPPING_FLAT_FEE": "0",
        "FREE_SHIPPING_THRESHOLD": None,
        "PUBLIC_BASE_URL": "https://shop.example.com",
        "PAYMENT_CALLBACK_URL": None,
    })
    app.extensions["payment"] = FakeProvider()
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def provider(app):
    return app.extensions["payment"]


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def make_variant(app):
    """Create a product with one variant; returns the variant id."""
    seq = count(1)

    def _make(stock=5, price="1000.00", name=None, size="M", color="Black"):
        n = next(seq)
        with app.app_context():
            product = Product(name=name or f"Product {n}", slug=f"product-{n}")
            variant = ProductVariant(size=size, color=color, sku=f"SKU-{n}",
                                     price=Decimal(price), stock=stock)
            product.variants = [variant]
            db.session.add(product)
            db.session.commit()
            return variant.id

    return _make


@pytest.fixture
def make_cart(app):
    """make_cart([(variant_id, qty), ...]) -> cart uuid"""

    def _make(lines):
        with app.app_context():
            cart = Cart(status="active")
            for variant_id, qty in lines:
                variant = db.session.get(ProductVariant, variant_id)
                cart.items.append(CartItem(variant_id=variant_id, quantity=qty, price_snapshot=variant.price))
            db.session.add(cart)
            db.session.commit()
            return cart.uuid

    return _make


@pytest.fixture
def stock_of(app):
    def _stock(variant_id):
        with app.app_context():
            return db.session.get(ProductVariant, variant_id).stock

    return _stock


@pytest.fixture
def load_order(app):
    def _load(order_number):
        with app.app_context():
            order = Order.query.filter_by(order_number=order_number).first()
            if order is not None:
                db.session.expunge(order)
            return order

    return _load


@pytest.fixture
def token(app):
    def _token(user_id="user-1", role="user"):
        with app.app_context():
            return create_access_token(identity=user_id, additional_claims={"role": role})

    return _token


def order_body(cart_id, **overrides):
    body = {
        "cart_id": cart_id,
        "shipping_name": "Wanjiru Kamau",
        "shipping_phone": "0712345678",
        "shipping_address": "12 Moi Avenue",
        "shipping_city": "Nairobi",
        "guest_email": "wanjiru@example.com",
    }
    body.update(overrides)
    return body


def webhook_payload(order_ref, status):
    return json.dumps({"order_ref": order_ref, "status": status})


class StubResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("response has no JSON body")
        return self._payload


class StubSession:
    """Stands in for requests.Session; routes by URL path.

    A route given several responses hands them out in order and then keeps
    returning the last one. An exception instance is raised instead of returned.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def on(self, path, *responses):
        self.routes[path] = list(responses)
        return self

    def _respond(self, method, url, **kwargs):
        path = "/" + url.split("://", 1)[-1].split("/", 1)[-1]
        self.calls.append({"method": method, "path": path, **kwargs})
        queue = self.routes.get(path)
        if not queue:
            raise AssertionError(f"unexpected {method} {path}")
        resp = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(resp, Exception):
            raise resp
        return resp

    def get(self, url, **kwargs):
        return self._respond("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._respond("POST", url, **kwargs)

    def calls_to(self, path):
        return [c for c in self.calls if c["path"] == path]


TOKEN_PATH = "/oauth/v1/generate"
STK_PATH = "/mpesa/stkpush/v1/processrequest"
QUERY_PATH = "/mpesa/stkpushquery/v1/query"


def daraja_session():
    return StubSession().on(TOKEN_PATH, StubResponse(200, {"access_token": "tok-1", "expires_in": "3599"}))


def stk_accepted(checkout_id="ws_CO_191220191020363925"):
    return StubResponse(200, {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_id,
        "ResponseCode": "0",
        "ResponseDescription": "Success. Request accepted for processing",
        "CustomerMessage": "Success. Request accepted for processing",
    })


def daraja_callback(checkout_id, result_code=0, account_ref=None):
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully." if result_code == 0
        else "Request cancelled by user",
    }
    if result_code == 0:
        items = [
            {"Name": "Amount", "Value": 2000},
            {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
            {"Name": "PhoneNumber", "Value": 254712345678},
        ]
        if account_ref:
            items.append({"Name": "AccountReference", "Value": account_ref})
        callback["CallbackMetadata"] = {"Item": items}
    return json.dumps({"Body": {"stkCallback": callback}})
