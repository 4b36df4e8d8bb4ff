"""HTTP tests for /payments and the webhook reconciler."""

import pytest

from storefront.extensions import db
from storefront.gateway import DarajaProvider, InvalidPaymentRequest, ProviderUnavailable
from storefront.services import payments, reconciler

from .conftest import (
    QUERY_PATH,
    STK_PATH,
    StubResponse,
    daraja_callback,
    daraja_session,
    order_body,
    stk_accepted,
    webhook_payload,
)


@pytest.fixture
def place(client, make_variant, make_cart):
    """Place a guest order; returns (order data, variant id)."""

    def _place(stock=5, qty=2, price="1000.00"):
        vid = make_variant(stock=stock, price=price)
        res = client.post("/orders", json=order_body(make_cart([(vid, qty)])))
        assert res.status_code == 201
        return res.get_json()["data"], vid

    return _place


def _init_body(order_id, **overrides):
    body = {"order_id": order_id, "phone": "0712345678", "email": "wanjiru@example.com", "name": "Wanjiru"}
    body.update(overrides)
    return body


def _initialize(client, order_id, **overrides):
    return client.post("/payments/initialize", json=_init_body(order_id, **overrides))


def _webhook(client, order_ref, status):
    return client.post("/payments/webhook", data=webhook_payload(order_ref, status))


class TestInitialize:
    def test_moves_order_to_payment_pending(self, client, provider, place, load_order):
        data, _ = place()
        res = _initialize(client, data["order_id"])
        assert res.status_code == 200
        assert res.get_json()["data"] == {
            "payment_ref": "ws_CO_000001", "message": "STK push sent. Check your phone.",
        }
        order = load_order(data["order_number"])
        assert order.status == "payment_pending"
        assert order.payment_provider == "fake"
        assert order.payment_ref == "ws_CO_000001"

        call = provider.initialized[0]
        assert call["order_ref"] == data["order_number"]
        assert call["amount"] == 200000
        assert call["callback_url"] == "https://shop.example.com/payments/webhook"

    def test_explicit_callback_url(self, app, client, provider, place):
        app.config["PAYMENT_CALLBACK_URL"] = "https://hooks.example.com/mpesa"
        data, _ = place()
        _initialize(client, data["order_id"])
        assert provider.initialized[0]["callback_url"] == "https://hooks.example.com/mpesa"

    def test_unknown_order(self, client):
        assert _initialize(client, "00000000-0000-0000-0000-000000000000").status_code == 404
        assert _initialize(client, "garbage").status_code == 404

    def test_order_not_pending(self, client, place):
        data, _ = place()
        assert _initialize(client, data["order_id"]).status_code == 200
        res = _initialize(client, data["order_id"])
        assert res.status_code == 400
        assert res.get_json()["data"]["order_status"] == "payment_pending"

    @pytest.mark.parametrize("overrides, message", [
        ({"phone": ""}, "missing fields: phone"),
        ({"name": None, "email": ""}, "missing fields: email, name"),
        ({"phone": "0712"}, "phone is too short"),
        ({"email": "nope"}, "email is invalid"),
    ])
    def test_validation(self, client, place, overrides, message):
        data, _ = place()
        res = _initialize(client, data["order_id"], **overrides)
        assert res.status_code == 400
        assert res.get_json()["message"] == message

    def test_provider_unavailable_leaves_order_pending(self, client, provider, place, load_order):
        data, _ = place()
        provider.fail_with = ProviderUnavailable("timeout")

        res = _initialize(client, data["order_id"])
        assert res.status_code == 502
        assert res.get_json()["data"]["code"] == "provider_unavailable"
        assert load_order(data["order_number"]).status == "pending"

        provider.fail_with = None
        assert _initialize(client, data["order_id"]).status_code == 200
        assert load_order(data["order_number"]).status == "payment_pending"

    def test_provider_rejects_request(self, client, provider, place, load_order):
        data, _ = place()
        provider.fail_with = InvalidPaymentRequest("invalid phone number")
        res = _initialize(client, data["order_id"])
        assert res.status_code == 400
        assert res.get_json()["data"]["code"] == "invalid_request"
        assert load_order(data["order_number"]).status == "pending"


class TestWebhook:
    def test_success_is_idempotent(self, client, place, load_order):
        data, _ = place()
        _initialize(client, data["order_id"])

        assert _webhook(client, data["order_number"], "success").get_json()["data"] == {"received": True}
        first = load_order(data["order_number"])
        assert first.status == "confirmed"

        res = _webhook(client, data["order_number"], "success")
        assert res.status_code == 200
        again = load_order(data["order_number"])
        assert again.status == "confirmed"
        assert again.paid_at == first.paid_at

    def test_failure_cancels_and_releases_once(self, client, place, load_order, stock_of):
        data, vid = place(stock=5, qty=2)
        _initialize(client, data["order_id"])
        assert stock_of(vid) == 3

        _webhook(client, data["order_number"], "failed")
        assert load_order(data["order_number"]).status == "cancelled"
        assert stock_of(vid) == 5

        _webhook(client, data["order_number"], "failed")
        assert stock_of(vid) == 5

    def test_late_failure_after_confirmation(self, client, place, load_order, stock_of):
        data, vid = place(stock=5, qty=2)
        _initialize(client, data["order_id"])
        _webhook(client, data["order_number"], "success")

        assert _webhook(client, data["order_number"], "failed").status_code == 200
        assert load_order(data["order_number"]).status == "confirmed"
        assert stock_of(vid) == 3

    def test_success_before_initialize_is_ignored(self, client, place, load_order):
        data, _ = place()
        _webhook(client, data["order_number"], "success")
        order = load_order(data["order_number"])
        assert order.status == "pending"
        assert order.paid_at is None

    def test_unknown_order_acknowledged(self, client, place, load_order):
        data, _ = place()
        res = _webhook(client, "ORD-19990101-ZZZZZZ", "success")
        assert res.status_code == 200
        assert res.get_json()["data"] == {"received": True}
        assert load_order(data["order_number"]).status == "pending"

    def test_malformed_body_acknowledged(self, client):
        res = client.post("/payments/webhook", data=b"\x00not json")
        assert res.status_code == 200
        assert res.get_json()["data"]["received"] is True

    def test_pending_status_changes_nothing(self, client, place, load_order):
        data, _ = place()
        _initialize(client, data["order_id"])
        _webhook(client, data["order_number"], "pending")
        assert load_order(data["order_number"]).status == "payment_pending"


class TestReconcilerOutcomes:
    def test_outcomes(self, app, client, place):
        data, _ = place()
        _initialize(client, data["order_id"])
        number = data["order_number"]

        with app.app_context():
            first = reconciler.handle_webhook(webhook_payload(number, "success"), None)
            assert (first.outcome, first.order_status) == (reconciler.APPLIED, "confirmed")
            assert reconciler.handle_webhook(webhook_payload(number, "success"), None).outcome == reconciler.DUPLICATE
            assert reconciler.handle_webhook(webhook_payload(number, "failed"), None).outcome == reconciler.IGNORED
            assert reconciler.handle_webhook(webhook_payload("ORD-X", "failed"), None).outcome == \
                reconciler.UNKNOWN_ORDER

    def test_find_order_by_payment_ref(self, app, client, place):
        data, _ = place()
        _initialize(client, data["order_id"])
        with app.app_context():
            assert reconciler.find_order("", "ws_CO_000001").order_number == data["order_number"]
            assert reconciler.find_order("ws_CO_000001").order_number == data["order_number"]
            assert reconciler.find_order("nothing", "nothing") is None


class TestVerify:
    def test_verify_applies_success(self, client, provider, place, load_order):
        data, _ = place()
        _initialize(client, data["order_id"])
        provider.verify_status["ws_CO_000001"] = "success"

        res = client.post("/payments/verify", json={"order_id": data["order_id"]})
        assert res.status_code == 200
        assert res.get_json()["data"] == {"payment_status": "success", "order_status": "confirmed"}
        assert load_order(data["order_number"]).paid_at is not None

    def test_verify_still_pending(self, client, place):
        data, _ = place()
        _initialize(client, data["order_id"])
        res = client.post("/payments/verify", json={"order_id": data["order_id"]})
        assert res.get_json()["data"] == {"payment_status": "pending", "order_status": "payment_pending"}

    def test_verify_without_payment(self, client, place):
        data, _ = place()
        assert client.post("/payments/verify", json={"order_id": data["order_id"]}).status_code == 400

    def test_verify_provider_down(self, client, provider, place):
        data, _ = place()
        _initialize(client, data["order_id"])
        provider.fail_with = ProviderUnavailable("down")
        assert client.post("/payments/verify", json={"order_id": data["order_id"]}).status_code == 502

    def test_verify_requires_order_id(self, client):
        assert client.post("/payments/verify", json={}).status_code == 400


class TestDarajaEndToEnd:
    def test_callback_matched_by_checkout_request_id(self, app, client, place, load_order, stock_of):
        session = (daraja_session()
                   .on(STK_PATH, stk_accepted("ws_CO_E2E"))
                   .on(QUERY_PATH, StubResponse(200, {"ResultCode": "0", "ResultDesc": "processed"})))
        app.extensions["payment"] = DarajaProvider(
            consumer_key="key", consumer_secret="secret", shortcode="174379",
            passkey="passkey", session=session,
        )
        data, vid = place(stock=3, qty=1, price="1499.50")

        res = _initialize(client, data["order_id"], phone="+254 712 345 678")
        assert res.status_code == 200
        assert res.get_json()["data"]["payment_ref"] == "ws_CO_E2E"
        stk = session.calls_to(STK_PATH)[0]["json"]
        assert stk["Amount"] == 1500
        assert stk["PhoneNumber"] == "254712345678"
        assert stk["AccountReference"] == data["order_number"]

        res = client.post("/payments/webhook", data=daraja_callback("ws_CO_E2E"))
        assert res.status_code == 200
        assert session.calls_to(QUERY_PATH)[0]["json"]["CheckoutRequestID"] == "ws_CO_E2E"
        order = load_order(data["order_number"])
        assert order.status == "confirmed"
        assert order.payment_provider == "daraja"
        assert stock_of(vid) == 2

    def test_unsigned_callback_not_backed_by_provider(self, app, client, place, load_order, stock_of):
        session = (daraja_session()
                   .on(STK_PATH, stk_accepted("ws_CO_FORGED"))
                   .on(QUERY_PATH, StubResponse(500, {
                       "errorCode": "500.001.1001", "errorMessage": "The transaction is being processed",
                   })))
        app.extensions["payment"] = DarajaProvider(
            consumer_key="key", consumer_secret="secret", shortcode="174379",
            passkey="passkey", session=session,
        )
        data, vid = place(stock=3, qty=1)
        _initialize(client, data["order_id"])

        res = client.post("/payments/webhook", data=daraja_callback("ws_CO_FORGED", account_ref=data["order_number"]))
        assert res.get_json()["data"] == {"received": True}
        order = load_order(data["order_number"])
        assert order.status == "payment_pending"
        assert order.paid_at is None
        assert stock_of(vid) == 2


class TestUnsignedCallbacks:
    def test_success_confirmed_with_provider(self, client, provider, place, load_order):
        provider.signs_webhooks = False
        data, _ = place()
        _initialize(client, data["order_id"])
        provider.verify_status["ws_CO_000001"] = "success"

        _webhook(client, data["order_number"], "success")
        assert load_order(data["order_number"]).status == "confirmed"

    def test_success_ignored_when_provider_disagrees(self, client, provider, place, load_order):
        provider.signs_webhooks = False
        data, _ = place()
        _initialize(client, data["order_id"])

        _webhook(client, data["order_number"], "success")
        assert load_order(data["order_number"]).status == "payment_pending"

    def test_provider_error_leaves_order_pending(self, client, provider, place, load_order):
        provider.signs_webhooks = False
        data, _ = place()
        _initialize(client, data["order_id"])
        provider.fail_with = ProviderUnavailable("down")

        assert _webhook(client, data["order_number"], "success").status_code == 200
        assert load_order(data["order_number"]).status == "payment_pending"

    def test_failure_needs_no_confirmation(self, client, provider, place, load_order, stock_of):
        provider.signs_webhooks = False
        data, vid = place(stock=5, qty=2)
        _initialize(client, data["order_id"])

        _webhook(client, data["order_number"], "failed")
        assert load_order(data["order_number"]).status == "cancelled"
        assert stock_of(vid) == 5


class TestRequestBodies:
    @pytest.mark.parametrize("path", ["/payments/initialize", "/payments/verify"])
    @pytest.mark.parametrize("body", [["x"], "order", 3])
    def test_non_object_body(self, client, path, body):
        res = client.post(path, json=body)
        assert res.status_code == 400
        assert res.get_json()["message"] == "invalid JSON body"


class TestTransactionsClosed:
    def test_after_webhook(self, app, client, place):
        data, _ = place()
        _initialize(client, data["order_id"])
        with app.app_context():
            reconciler.handle_webhook(webhook_payload(data["order_number"], "success"), None)
            assert not db.session().in_transaction()

    def test_after_verify(self, app, client, provider, place):
        data, _ = place()
        _initialize(client, data["order_id"])
        provider.verify_status["ws_CO_000001"] = "success"
        with app.app_context():
            assert payments.verify_payment(data["order_id"]) == ("success", "confirmed")
            assert not db.session().in_transaction()

    def test_after_initialize(self, app, place):
        data, _ = place()
        with app.app_context():
            payments.initiate_payment(data["order_id"], "0712345678", "a@example.com", "A")
            assert not db.session().in_transaction()
