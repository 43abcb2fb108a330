"""
Order tests: atomic placement, the lifecycle state machine, stock
release on cancellation/deletion, legacy single-item orders and
ownership checks.
"""

import re

import pytest

from storefront.extensions import db
from storefront.models import InventoryRecord, Order, Product, StockMovement
from storefront.services.order_service import ALLOWED_TRANSITIONS, can_transition

pytestmark = pytest.mark.checkout


def _stock(product):
    return db.session.get(Product, product.id).stock


def _place(client, headers, items, **extra):
    return client.post("/api/orders", headers=headers, json={"items": items, **extra})


def _set_status(client, headers, order_id, status, **extra):
    return client.put(f"/api/orders/{order_id}/status", headers=headers, json={"status": status, **extra})


@pytest.fixture
def mug(make_product):
    return make_product("Mug", price_cents=1200, stock=10)


@pytest.fixture
def pot(make_product):
    return make_product("Teapot", price_cents=3000, stock=1)


class TestPlacement:
    def test_multi_item_order(self, client, customer_headers, mug, pot):
        resp = _place(
            client, customer_headers,
            [{"product_id": mug.id, "quantity": 2}, {"product_id": pot.id, "quantity": 1}],
            tax_cents=300, shipping_cents=500, discount_cents=200, discount_code="WELCOME",
            shipping_address={"full_name": "Casey Customer", "city": "Lisbon"},
        )
        assert resp.status_code == 201
        body = resp.get_json()

        assert re.fullmatch(r"ORD-\d+-[0-9A-F]{8}", body["order_number"])
        assert body["customer_code"] == "CASEY01"
        assert body["status"] == "Pending"
        assert body["payment_status"] == "Pending"
        assert body["subtotal_cents"] == 2 * 1200 + 3000
        assert body["total_cents"] == 5400 + 300 + 500 - 200
        assert body["product_name"] == "Mug (+1 more)"
        assert body["quantity"] == 3
        assert body["shipping_address"]["city"] == "Lisbon"
        assert [(i["product_name"], i["price_cents"], i["total_cents"]) for i in body["items"]] == [
            ("Mug", 1200, 2400),
            ("Teapot", 3000, 3000),
        ]

        assert _stock(mug) == 8
        assert _stock(pot) == 0

    def test_snapshot_survives_price_change(self, client, db_session, customer_headers, mug):
        order_id = _place(client, customer_headers, [{"product_id": mug.id, "quantity": 1}]).get_json()["id"]
        mug.price_cents = 9999
        db_session.commit()

        body = client.get(f"/api/orders/{order_id}", headers=customer_headers).get_json()
        assert body["items"][0]["price_cents"] == 1200

    def test_insufficient_stock_on_any_line_writes_nothing(self, client, customer_headers, mug, pot):
        resp = _place(
            client, customer_headers,
            [{"product_id": mug.id, "quantity": 2}, {"product_id": pot.id, "quantity": 2}],
        )
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["product_id"] == pot.id
        assert body["available"] == 1

        assert Order.query.count() == 0
        assert _stock(mug) == 10
        assert _stock(pot) == 1

    def test_guard_uses_merged_quantity_per_product(self, client, customer_headers, make_product):
        product = make_product("Kettle", stock=3)
        resp = _place(
            client, customer_headers,
            [{"product_id": product.id, "quantity": 2}, {"product_id": product.id, "quantity": 2}],
        )
        assert resp.status_code == 409
        assert _stock(product) == 3

    @pytest.mark.parametrize("payload", [
        {"items": []},
        {"items": [{"product_id": 1}]},
        {"items": [{"quantity": 1}]},
        {"items": "nope"},
        {},
    ])
    def test_malformed_payloads(self, client, customer_headers, mug, payload):
        assert client.post("/api/orders", headers=customer_headers, json=payload).status_code == 400
        assert _stock(mug) == 10

    def test_unknown_product(self, client, customer_headers, db_session):
        resp = _place(client, customer_headers, [{"product_id": 4242, "quantity": 1}])
        assert resp.status_code == 404

    def test_discount_larger_than_order_rejected(self, client, customer_headers, mug):
        resp = _place(client, customer_headers, [{"product_id": mug.id, "quantity": 1}], discount_cents=5000)
        assert resp.status_code == 400
        assert _stock(mug) == 10

    def test_linked_record_gets_out_movement(self, client, customer_headers, make_product):
        product = make_product("Grinder", stock=4, record=True)
        body = _place(client, customer_headers, [{"product_id": product.id, "quantity": 3}]).get_json()

        record = InventoryRecord.query.filter_by(product_id=product.id).one()
        assert record.stock == 1
        movement = StockMovement.query.filter_by(record_id=record.id).one()
        assert movement.type == "OUT"
        assert movement.reference == body["order_number"]

    def test_admin_orders_on_behalf_of_customer(self, client, admin_headers, customer, mug):
        resp = _place(client, admin_headers, [{"product_id": mug.id, "quantity": 1}], customer_code="casey01")
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["customer_code"] == "CASEY01"
        assert body["customer_id"] == customer.id

    def test_customer_cannot_spoof_customer_code(self, client, customer_headers, mug):
        resp = _place(client, customer_headers, [{"product_id": mug.id, "quantity": 1}], customer_code="OLIVE01")
        assert resp.get_json()["customer_code"] == "CASEY01"


class TestLegacyOrders:
    def test_known_product_name_consumes_stock(self, client, customer_headers, mug):
        resp = client.post("/api/orders", headers=customer_headers, json={"product_name": "mug", "quantity": 3})
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["items"][0]["product_id"] == mug.id
        assert body["subtotal_cents"] == 3600
        assert _stock(mug) == 7

    def test_unknown_product_name_uses_flat_price(self, client, customer_headers, mug):
        resp = client.post("/api/orders", headers=customer_headers,
                           json={"product_name": "Hand-thrown Vase", "quantity": 2})
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["product_name"] == "Hand-thrown Vase"
        assert body["items"][0]["product_id"] is None
        assert body["subtotal_cents"] == 2000
        assert _stock(mug) == 10

    def test_quantity_required(self, client, customer_headers, db_session):
        resp = client.post("/api/orders", headers=customer_headers, json={"product_name": "Vase"})
        assert resp.status_code == 400


class TestLifecycle:
    def test_transition_table(self):
        assert can_transition("Pending", "Processing")
        assert can_transition("Shipped", "Delivered")
        assert not can_transition("Pending", "Delivered")
        assert not can_transition("Delivered", "Cancelled")
        for terminal in ("Delivered", "Cancelled", "Refunded"):
            assert ALLOWED_TRANSITIONS[terminal] == set()

    def test_happy_path_with_tracking(self, client, customer_headers, admin_headers, mug):
        order_id = _place(client, customer_headers, [{"product_id": mug.id, "quantity": 1}]).get_json()["id"]

        assert _set_status(client, admin_headers, order_id, "Processing").status_code == 200
        resp = _set_status(client, admin_headers, order_id, "Shipped",
                           tracking_number="1Z999", carrier="UPS")
        assert resp.get_json()["tracking"]["tracking_number"] == "1Z999"

        resp = _set_status(client, admin_headers, order_id, "Delivered")
        body = resp.get_json()
        assert body["status"] == "Delivered"
        assert body["tracking"]["delivered_at"] is not None
        assert _stock(mug) == 9

    def test_illegal_transition(self, client, customer_headers, admin_headers, mug):
        order_id = _place(client, customer_headers, [{"product_id": mug.id, "quantity": 1}]).get_json()["id"]
        resp = _set_status(client, admin_headers, order_id, "Delivered")
        assert resp.status_code == 409
        assert resp.get_json()["current_status"] == "Pending"

        assert _set_status(client, admin_headers, order_id, "Lost").status_code == 400
        assert client.put(f"/api/orders/{order_id}/status", headers=admin_headers, json={}).status_code == 400

    def test_cancel_restores_stock_exactly_once(self, client, customer_headers, admin_headers, mug):
        order_id = _place(client, customer_headers, [{"product_id": mug.id, "quantity": 4}]).get_json()["id"]
        assert _stock(mug) == 6

        resp = _set_status(client, admin_headers, order_id, "Cancelled")
        assert resp.status_code == 200
        assert resp.get_json()["stock_released"] is True
        assert _stock(mug) == 10

        assert _set_status(client, admin_headers, order_id, "Cancelled").status_code == 409
        assert client.delete(f"/api/orders/{order_id}", headers=admin_headers).status_code == 200
        assert _stock(mug) == 10

    def test_refund_keeps_stock_and_marks_payment(self, client, customer_headers, admin_headers, mug):
        order_id = _place(client, customer_headers, [{"product_id": mug.id, "quantity": 2}]).get_json()["id"]
        body = _set_status(client, admin_headers, order_id, "Refunded").get_json()
        assert body["payment_status"] == "Refunded"
        assert body["stock_released"] is False
        assert _stock(mug) == 8

    def test_delete_unreleased_order_restores_stock(self, client, customer_headers, admin_headers, mug):
        order_id = _place(client, customer_headers, [{"product_id": mug.id, "quantity": 3}]).get_json()["id"]
        assert client.delete(f"/api/orders/{order_id}", headers=admin_headers).status_code == 200
        assert _stock(mug) == 10
        assert Order.query.count() == 0
        assert client.delete(f"/api/orders/{order_id}", headers=admin_headers).status_code == 404

    def test_customers_cannot_change_status(self, client, customer_headers, mug):
        order_id = _place(client, customer_headers, [{"product_id": mug.id, "quantity": 1}]).get_json()["id"]
        assert _set_status(client, customer_headers, order_id, "Cancelled").status_code == 403


class TestReadsAndEdits:
    def test_owner_admin_and_stranger(self, client, customer_headers, other_headers, admin_headers, mug):
        order_id = _place(client, customer_headers, [{"product_id": mug.id, "quantity": 1}]).get_json()["id"]

        assert client.get(f"/api/orders/{order_id}", headers=customer_headers).status_code == 200
        assert client.get(f"/api/orders/{order_id}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/orders/{order_id}", headers=other_headers).status_code == 404

    def test_my_orders(self, client, customer_headers, other_headers, mug):
        _place(client, customer_headers, [{"product_id": mug.id, "quantity": 1}])
        _place(client, other_headers, [{"product_id": mug.id, "quantity": 1}])

        data = client.get("/api/orders/mine", headers=customer_headers).get_json()
        assert data["total"] == 1
        assert data["items"][0]["customer_code"] == "CASEY01"

    def test_admin_list_filters(self, client, customer_headers, other_headers, admin_headers, mug, pot):
        _place(client, customer_headers, [{"product_id": mug.id, "quantity": 1}])
        second = _place(client, other_headers, [{"product_id": pot.id, "quantity": 1}]).get_json()
        _set_status(client, admin_headers, second["id"], "Processing")

        data = client.get("/api/orders?status=Processing", headers=admin_headers).get_json()
        assert [o["id"] for o in data["items"]] == [second["id"]]

        data = client.get("/api/orders?search=olive", headers=admin_headers).get_json()
        assert [o["id"] for o in data["items"]] == [second["id"]]

        data = client.get("/api/orders?startDate=2000-01-01&endDate=2000-01-02", headers=admin_headers).get_json()
        assert data["total"] == 0

        assert client.get("/api/orders?startDate=yesterday", headers=admin_headers).status_code == 400
        assert client.get("/api/orders?status=Lost", headers=admin_headers).status_code == 400

    def test_admin_edits_non_stock_fields(self, client, customer_headers, admin_headers, mug):
        order_id = _place(client, customer_headers, [{"product_id": mug.id, "quantity": 1}]).get_json()["id"]

        resp = client.put(f"/api/orders/{order_id}", headers=admin_headers, json={
            "admin_note": "Gift wrap",
            "payment_status": "Paid",
            "shipping_address": {"street": "1 Rua Augusta", "zip_code": "1100-048"},
        })
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["admin_note"] == "Gift wrap"
        assert body["payment_status"] == "Paid"
        assert body["shipping_address"]["zip_code"] == "1100-048"

        assert client.put(f"/api/orders/{order_id}", headers=admin_headers,
                          json={"status": "Delivered"}).status_code == 400
        assert client.put(f"/api/orders/{order_id}", headers=admin_headers,
                          json={"payment_status": "Maybe"}).status_code == 400
        assert _stock(mug) == 9
