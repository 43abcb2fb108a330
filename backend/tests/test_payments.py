"""
Checkout through the payment gateway: intents, confirmation, replay and
the HTTP gateway client.
"""

from urllib.parse import parse_qs

import httpx
import pytest

from storefront.errors import PaymentGatewayError
from storefront.extensions import db
from storefront.models import Order, Product
from storefront.services.payment_gateway import HttpPaymentGateway

pytestmark = pytest.mark.checkout


def _stock(product):
    return db.session.get(Product, product.id).stock


def _add(client, headers, product, quantity=1):
    resp = client.post("/api/cart", headers=headers, json={"product_id": product.id, "quantity": quantity})
    assert resp.status_code == 200


def _paid_intent(client, headers, gateway):
    intent = client.post("/api/payments/intent", headers=headers).get_json()
    gateway.succeed(intent["payment_intent_id"])
    return intent["payment_intent_id"]


def _confirm(client, headers, intent_id, **extra):
    return client.post("/api/payments/confirm", headers=headers,
                       json={"payment_intent_id": intent_id, **extra})


@pytest.fixture
def stocked(make_product):
    return {
        "mug": make_product("Mug", price_cents=1000, stock=5),
        "pot": make_product("Teapot", price_cents=2500, stock=2),
    }


class TestIntent:
    def test_amount_is_subtotal_plus_shipping(self, client, customer_headers, gateway, stocked):
        _add(client, customer_headers, stocked["mug"], 2)

        resp = client.post("/api/payments/intent", headers=customer_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["subtotal_cents"] == 2000
        assert body["shipping_cents"] == 500
        assert body["amount_cents"] == 2500
        assert body["client_secret"].startswith(body["payment_intent_id"])
        assert gateway.intents[body["payment_intent_id"]]["amount"] == 2500

    def test_empty_cart_rejected(self, client, customer_headers, gateway):
        resp = client.post("/api/payments/intent", headers=customer_headers)
        assert resp.status_code == 400
        assert gateway.intents == {}

    def test_stock_checked_before_opening_intent(self, client, db_session, customer_headers, gateway, stocked):
        _add(client, customer_headers, stocked["pot"], 2)
        stocked["pot"].stock = 1
        db_session.commit()

        resp = client.post("/api/payments/intent", headers=customer_headers)
        assert resp.status_code == 409
        assert gateway.intents == {}

    def test_gateway_failure_is_bad_gateway(self, client, customer_headers, gateway, stocked):
        _add(client, customer_headers, stocked["mug"])
        gateway.error = "connection refused"

        resp = client.post("/api/payments/intent", headers=customer_headers)
        assert resp.status_code == 502


class TestConfirm:
    def test_confirm_creates_paid_order(self, client, customer_headers, gateway, stocked):
        _add(client, customer_headers, stocked["mug"], 2)
        _add(client, customer_headers, stocked["pot"], 1)
        intent_id = _paid_intent(client, customer_headers, gateway)

        resp = _confirm(client, customer_headers, intent_id, shipping_address={"city": "Porto"})
        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["payment_status"] == "Paid"
        assert order["payment_method"] == "Credit Card"
        assert order["payment_reference"] == intent_id
        assert order["subtotal_cents"] == 4500
        assert order["shipping_cents"] == 500
        assert order["total_cents"] == 5000
        assert order["shipping_address"]["city"] == "Porto"
        assert order["shipping_address"]["full_name"] == "Casey Customer"
        assert order["shipping_address"]["email"] == "casey@example.com"

        assert _stock(stocked["mug"]) == 3
        assert _stock(stocked["pot"]) == 1
        assert client.get("/api/cart", headers=customer_headers).get_json()["items"] == []

    def test_replay_returns_same_order(self, client, customer_headers, gateway, stocked):
        _add(client, customer_headers, stocked["mug"], 2)
        intent_id = _paid_intent(client, customer_headers, gateway)

        first = _confirm(client, customer_headers, intent_id).get_json()["order"]
        # A fresh cart must not be charged by the replay
        _add(client, customer_headers, stocked["mug"], 1)

        resp = _confirm(client, customer_headers, intent_id)
        assert resp.status_code == 200
        assert resp.get_json()["order"]["id"] == first["id"]

        assert Order.query.count() == 1
        assert _stock(stocked["mug"]) == 3
        assert len(client.get("/api/cart", headers=customer_headers).get_json()["items"]) == 1

    def test_reference_of_another_user_conflicts(self, client, customer_headers, other_headers, gateway, stocked):
        _add(client, customer_headers, stocked["mug"])
        intent_id = _paid_intent(client, customer_headers, gateway)
        assert _confirm(client, customer_headers, intent_id).status_code == 201

        _add(client, other_headers, stocked["mug"])
        assert _confirm(client, other_headers, intent_id).status_code == 409
        assert Order.query.count() == 1

    def test_intent_opened_for_another_user_conflicts(self, client, customer_headers, other_headers, gateway,
                                                      stocked):
        _add(client, customer_headers, stocked["mug"])
        intent_id = _paid_intent(client, customer_headers, gateway)

        # Same cart total, so only the intent owner tells them apart
        _add(client, other_headers, stocked["mug"])
        resp = _confirm(client, other_headers, intent_id)
        assert resp.status_code == 409
        assert Order.query.count() == 0
        assert _stock(stocked["mug"]) == 5

        resp = _confirm(client, customer_headers, intent_id)
        assert resp.status_code == 201
        assert resp.get_json()["order"]["payment_reference"] == intent_id
        assert len(client.get("/api/cart", headers=other_headers).get_json()["items"]) == 1

    def test_intent_without_amount_is_gateway_error(self, client, customer_headers, gateway, stocked):
        _add(client, customer_headers, stocked["mug"])
        intent_id = _paid_intent(client, customer_headers, gateway)
        gateway.intents[intent_id]["amount"] = None

        assert _confirm(client, customer_headers, intent_id).status_code == 502
        assert Order.query.count() == 0
        assert _stock(stocked["mug"]) == 5

    def test_unpaid_intent_rejected(self, client, customer_headers, gateway, stocked):
        _add(client, customer_headers, stocked["mug"])
        intent = client.post("/api/payments/intent", headers=customer_headers).get_json()

        resp = _confirm(client, customer_headers, intent["payment_intent_id"])
        assert resp.status_code == 400
        assert resp.get_json()["payment_status"] == "requires_payment_method"
        assert Order.query.count() == 0
        assert _stock(stocked["mug"]) == 5

    def test_amount_mismatch_rejected(self, client, customer_headers, gateway, stocked):
        _add(client, customer_headers, stocked["mug"])
        intent_id = _paid_intent(client, customer_headers, gateway)
        # Cart grew after the intent was paid
        _add(client, customer_headers, stocked["mug"], 1)

        resp = _confirm(client, customer_headers, intent_id)
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["paid_cents"] == 1500
        assert body["expected_cents"] == 2500
        assert _stock(stocked["mug"]) == 5

    def test_stock_gone_after_payment_writes_nothing(self, client, db_session, customer_headers, gateway, stocked):
        _add(client, customer_headers, stocked["mug"], 2)
        _add(client, customer_headers, stocked["pot"], 2)
        intent_id = _paid_intent(client, customer_headers, gateway)

        stocked["pot"].stock = 1
        db_session.commit()

        resp = _confirm(client, customer_headers, intent_id)
        assert resp.status_code == 409
        assert resp.get_json()["product_id"] == stocked["pot"].id

        assert Order.query.count() == 0
        assert _stock(stocked["mug"]) == 5
        assert _stock(stocked["pot"]) == 1
        assert len(client.get("/api/cart", headers=customer_headers).get_json()["items"]) == 2

    def test_missing_reference(self, client, customer_headers, gateway):
        assert client.post("/api/payments/confirm", headers=customer_headers, json={}).status_code == 400

    def test_unknown_reference_is_gateway_error(self, client, customer_headers, gateway, stocked):
        _add(client, customer_headers, stocked["mug"])
        assert _confirm(client, customer_headers, "pi_unknown").status_code == 502

    def test_history_lists_paid_orders(self, client, customer_headers, gateway, stocked):
        _add(client, customer_headers, stocked["mug"])
        intent_id = _paid_intent(client, customer_headers, gateway)
        _confirm(client, customer_headers, intent_id)

        data = client.get("/api/payments/history", headers=customer_headers).get_json()
        assert data["total"] == 1
        assert data["items"][0]["payment_reference"] == intent_id


class TestHttpPaymentGateway:
    def _gateway(self, handler, api_key="sk_test_123"):
        return HttpPaymentGateway(
            "https://payments.example/v1/",
            api_key,
            transport=httpx.MockTransport(handler),
        )

    def test_create_intent_posts_form_with_bearer_auth(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={
                "id": "pi_1", "client_secret": "pi_1_secret", "status": "requires_payment_method", "amount": 2500,
            })

        intent = self._gateway(handler).create_intent(2500, "usd", {"user_id": "7"})

        assert intent == {
            "id": "pi_1", "client_secret": "pi_1_secret", "status": "requires_payment_method", "amount": 2500,
        }
        assert seen["url"] == "https://payments.example/v1/payment_intents"
        assert seen["auth"] == "Bearer sk_test_123"
        assert seen["form"]["amount"] == ["2500"]
        assert seen["form"]["currency"] == ["usd"]
        assert seen["form"]["metadata[user_id]"] == ["7"]

    def test_retrieve_intent(self):
        def handler(request):
            assert request.method == "GET"
            assert request.url.path == "/v1/payment_intents/pi_9"
            return httpx.Response(200, json={
                "id": "pi_9", "status": "succeeded", "amount": 900, "metadata": {"user_id": "7"}, "extra": 1,
            })

        assert self._gateway(handler).retrieve_intent("pi_9") == {
            "id": "pi_9", "status": "succeeded", "amount": 900, "metadata": {"user_id": "7"},
        }

    def test_error_response_mapped(self):
        def handler(request):
            return httpx.Response(402, json={"error": {"message": "Your card was declined."}})

        with pytest.raises(PaymentGatewayError) as exc:
            self._gateway(handler).retrieve_intent("pi_1")
        assert str(exc.value) == "Your card was declined."
        assert exc.value.details == {"gateway_status": 402}
        assert exc.value.status_code == 502

    def test_transport_error_mapped(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PaymentGatewayError, match="unreachable"):
            self._gateway(handler).create_intent(100, "usd", {})

    def test_missing_api_key(self):
        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(PaymentGatewayError, match="not configured"):
            self._gateway(handler, api_key="").create_intent(100, "usd", {})
