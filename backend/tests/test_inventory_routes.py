"""
Inventory record routes, the health endpoint and the stock CLI.

Every balance change made through these surfaces must show up as a
ledger movement.
"""

import pytest

from storefront.extensions import db
from storefront.models import InventoryRecord, Product, StockMovement

pytestmark = pytest.mark.admin


def _movements(record_id):
    return StockMovement.query.filter_by(record_id=record_id).order_by(StockMovement.id).all()


def _create(client, headers, **fields):
    body = {"name": "Oolong", "stock": 10, "threshold": 3, **fields}
    return client.post("/api/inventory", headers=headers, json=body)


class TestRecords:
    def test_create_ledgers_opening_stock(self, client, admin_headers):
        resp = _create(client, admin_headers)
        assert resp.status_code == 201
        body = resp.get_json()

        assert body["sku"] == "OOL0001"
        assert body["stock"] == 10
        assert body["reorder_point"] == 6
        assert [(m["type"], m["quantity"], m["reason"]) for m in body["movements"]] == [
            ("IN", 10, "Initial stock entry"),
        ]

    def test_create_linked_to_product(self, client, admin_headers, make_product):
        product = make_product("Oolong", stock=99)
        resp = _create(client, admin_headers, sku="tea-1", product_id=product.id)
        assert resp.status_code == 201
        assert resp.get_json()["sku"] == "TEA-1"

        refreshed = db.session.get(Product, product.id)
        assert refreshed.stock == 10
        assert refreshed.threshold == 3

        # A product is tracked by at most one record
        assert _create(client, admin_headers, name="Copy", product_id=product.id).status_code == 409

    def test_create_validation(self, client, admin_headers, db_session):
        assert client.post("/api/inventory", headers=admin_headers, json={"stock": 1}).status_code == 400
        assert _create(client, admin_headers, stock=-1).status_code == 400
        assert _create(client, admin_headers, status="Lost").status_code == 400
        assert _create(client, admin_headers, product_id=4242).status_code == 404
        assert InventoryRecord.query.count() == 0

    def test_duplicate_sku(self, client, admin_headers):
        _create(client, admin_headers, sku="OOL1")
        assert _create(client, admin_headers, sku="ool1").status_code == 409

    def test_stock_edit_becomes_movement(self, client, admin_headers):
        record_id = _create(client, admin_headers).get_json()["id"]

        body = client.put(f"/api/inventory/{record_id}", headers=admin_headers, json={"stock": 14}).get_json()
        assert body["stock"] == 14
        body = client.put(f"/api/inventory/{record_id}", headers=admin_headers,
                          json={"stock": 4, "reason": "Damaged in transit"}).get_json()
        assert body["stock"] == 4

        movements = _movements(record_id)
        assert [(m.type, m.quantity, m.previous_stock, m.new_stock, m.reason) for m in movements[1:]] == [
            ("IN", 4, 10, 14, "Stock adjustment"),
            ("OUT", 10, 14, 4, "Damaged in transit"),
        ]

    def test_non_stock_edit_adds_no_movement(self, client, admin_headers):
        record_id = _create(client, admin_headers).get_json()["id"]
        resp = client.put(f"/api/inventory/{record_id}", headers=admin_headers,
                          json={"supplier_name": "Leaf & Co", "stock": 10})
        assert resp.get_json()["supplier_name"] == "Leaf & Co"
        assert len(_movements(record_id)) == 1

    def test_movement_endpoint(self, client, admin_headers):
        record_id = _create(client, admin_headers).get_json()["id"]

        resp = client.post(f"/api/inventory/{record_id}/movements", headers=admin_headers,
                           json={"type": "out", "quantity": 25, "reason": "Spoiled", "reference": "WO-1"})
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["movement"]["type"] == "OUT"
        assert body["movement"]["new_stock"] == 0
        assert body["record"]["stock"] == 0
        assert body["record"]["stock_status"] == "Out of Stock"

        for bad in ({"type": "LOST", "quantity": 1, "reason": "x"},
                    {"type": "IN", "quantity": 1},
                    {"type": "IN", "quantity": 0, "reason": "x"},
                    {"type": "IN", "quantity": 1.5, "reason": "x"}):
            assert client.post(f"/api/inventory/{record_id}/movements", headers=admin_headers,
                               json=bad).status_code == 400
        assert client.post("/api/inventory/9999/movements", headers=admin_headers,
                           json={"type": "IN", "quantity": 1, "reason": "x"}).status_code == 404

    def test_stock_check(self, client, admin_headers):
        record_id = _create(client, admin_headers).get_json()["id"]

        resp = client.post(f"/api/inventory/{record_id}/stock-check", headers=admin_headers,
                           json={"physical_count": 8, "notes": "Shelf count"})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["variance"] == -2
        assert body["record"]["stock"] == 8
        check = body["record"]["last_stock_check"]
        assert check["physical_count"] == 8
        assert check["system_count"] == 10
        assert check["notes"] == "Shelf count"

        last = _movements(record_id)[-1]
        assert last.type == "ADJUSTMENT"
        assert last.reason == "Stock check adjustment. Variance: -2"

        # Matching count: no movement
        body = client.post(f"/api/inventory/{record_id}/stock-check", headers=admin_headers,
                           json={"physical_count": 8}).get_json()
        assert body["variance"] == 0
        assert len(_movements(record_id)) == 2

        assert client.post(f"/api/inventory/{record_id}/stock-check", headers=admin_headers,
                           json={}).status_code == 400

    def test_delete_is_soft(self, client, admin_headers):
        record_id = _create(client, admin_headers).get_json()["id"]
        resp = client.delete(f"/api/inventory/{record_id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["record"]["status"] == "Discontinued"

        body = client.get(f"/api/inventory/{record_id}", headers=admin_headers).get_json()
        assert body["status"] == "Discontinued"
        assert len(body["movements"]) == 1

    def test_low_and_out_of_stock_lists(self, client, admin_headers):
        _create(client, admin_headers, name="Plenty", stock=50)
        _create(client, admin_headers, name="Scarce", stock=2)
        _create(client, admin_headers, name="Empty", stock=0)

        low = client.get("/api/inventory/low-stock", headers=admin_headers).get_json()
        assert [r["name"] for r in low["items"]] == ["Empty", "Scarce"]
        assert low["count"] == 2

        out = client.get("/api/inventory/out-of-stock", headers=admin_headers).get_json()
        assert [r["name"] for r in out["items"]] == ["Empty"]

        data = client.get("/api/inventory?low_stock=true", headers=admin_headers).get_json()
        assert data["total"] == 2
        data = client.get("/api/inventory?search=plen", headers=admin_headers).get_json()
        assert [r["name"] for r in data["items"]] == ["Plenty"]
        assert client.get("/api/inventory?search=_", headers=admin_headers).get_json()["total"] == 0
        assert client.get("/api/inventory?low_stock=sometimes", headers=admin_headers).status_code == 400

    def test_customers_forbidden(self, client, customer_headers):
        assert client.post("/api/inventory", headers=customer_headers,
                           json={"name": "Oolong"}).status_code == 403


class TestHealth:
    def test_healthy(self, client, make_product):
        make_product("Mug", record=True)
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["details"]["inventory_records"] == 1

    def test_drift_is_degraded(self, client, db_session, make_product):
        product = make_product("Mug", stock=5, record=True)
        product.stock = 3
        db_session.commit()

        body = client.get("/api/health").get_json()
        assert body["status"] == "degraded"
        assert body["checks"]["stock"]["status"] == "degraded"


class TestStockCli:
    def test_reconcile_reports_and_fixes_drift(self, app, db_session, make_product):
        product = make_product("Mug", stock=5, record=True)
        product.stock = 3
        db_session.commit()
        runner = app.test_cli_runner()

        result = runner.invoke(args=["stock", "reconcile"])
        assert result.exit_code == 1
        assert "DRIFT TST0001: record=5 product=3" in result.output
        # The fixture record has no opening movement, so its ledger says 0
        assert "DRIFT TST0001: record=5 ledger=0" in result.output

        result = runner.invoke(args=["stock", "reconcile", "--fix"])
        assert result.exit_code == 0
        assert "Reconciled 1 record(s)" in result.output

        db_session.expire_all()
        record = InventoryRecord.query.filter_by(product_id=product.id).one()
        assert record.stock == 3
        last = _movements(record.id)[-1]
        assert (last.type, last.previous_stock, last.new_stock) == ("ADJUSTMENT", 5, 3)

        result = runner.invoke(args=["stock", "reconcile"])
        assert result.exit_code == 0
        assert "All records match their products and ledgers" in result.output

    def test_reconcile_ledger_drift_on_unlinked_record(self, app, client, db_session, admin_headers):
        record_id = _create(client, admin_headers).get_json()["id"]
        record = db.session.get(InventoryRecord, record_id)
        record.stock = 12
        db_session.commit()
        runner = app.test_cli_runner()

        result = runner.invoke(args=["stock", "reconcile"])
        assert result.exit_code == 1
        assert "DRIFT OOL0001: record=12 ledger=10" in result.output

        result = runner.invoke(args=["stock", "reconcile", "--fix"])
        assert result.exit_code == 0

        db_session.expire_all()
        last = _movements(record_id)[-1]
        assert (last.type, last.previous_stock, last.new_stock, last.reason) == (
            "ADJUSTMENT", 12, 12, "Reconciled with ledger",
        )
        assert runner.invoke(args=["stock", "reconcile"]).exit_code == 0

    def test_record_movement_command(self, app, client, admin_headers):
        _create(client, admin_headers, sku="OOL1")
        runner = app.test_cli_runner()

        result = runner.invoke(args=["stock", "record", "OOL1", "in", "5", "--reason", "Delivery"])
        assert result.exit_code == 0
        assert "IN 5: 10 -> 15" in result.output

        result = runner.invoke(args=["stock", "record", "NOPE", "IN", "5", "--reason", "Delivery"])
        assert result.exit_code == 1

    def test_seed_demo_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["shop", "seed-demo"])
        assert result.exit_code == 0, result.output
        assert "Seeded 5 product(s)" in result.output

        result = runner.invoke(args=["shop", "seed-demo"])
        assert result.exit_code == 0, result.output
        assert "Seeded 0 product(s)" in result.output

        db_session.expire_all()
        assert Product.query.count() == 5
        for record in InventoryRecord.query.all():
            assert record.product.stock == record.stock
