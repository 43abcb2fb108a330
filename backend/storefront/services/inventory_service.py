# Overview: Service-layer operations for inventory records; encapsulates business logic and database work.

"""
Inventory records (one per SKU) and their maintenance flows.

Every balance change made here goes through stock_service.append_movement,
so the movement history always explains the current balance. Records are
never hard-deleted: their movements are immutable, so deleting a record
marks it Discontinued.
"""

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import or_

from ..errors import ConflictError, NotFoundError, StorefrontError, ValidationError
from ..extensions import db
from ..models import InventoryRecord, Product
from ..models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_IN, MOVEMENT_OUT
from .concurrency import begin_immediate, run_with_retry
from .pagination import paginate
from .stock_service import append_movement, record_movement
from storefront.time_utils import utcnow

RECORD_MUTABLE_FIELDS = {
    "name", "threshold", "unit", "cost_price_cents", "selling_price_cents",
    "supplier_name", "warehouse", "status", "reorder_point", "max_stock",
}

DEFAULT_ADJUSTMENT_REASON = "Stock adjustment"


def generate_sku(name: str) -> str:
    """First three letters of the name, upper-cased, plus a 4-digit sequence."""
    prefix = re.sub(r"[^A-Za-z]", "", name or "")[:3].upper() or "INV"
    seq = db.session.query(InventoryRecord).count() + 1
    while True:
        sku = f"{prefix}{seq:04d}"
        if not db.session.query(InventoryRecord).filter(InventoryRecord.sku == sku).first():
            return sku
        seq += 1


def get_record(record_id: int) -> InventoryRecord:
    record = db.session.get(InventoryRecord, record_id)
    if record is None:
        raise NotFoundError("Inventory record not found")
    return record


def list_records(
    *,
    search: str | None = None,
    status: str | None = None,
    low_stock: bool = False,
    out_of_stock: bool = False,
    page: int | None = None,
    limit: int | None = None,
) -> dict:
    query = db.session.query(InventoryRecord)
    if search:
        term = search.strip()
        query = query.filter(or_(
            InventoryRecord.name.icontains(term, autoescape=True),
            InventoryRecord.sku.icontains(term, autoescape=True),
        ))
    if status and status != "All":
        query = query.filter(InventoryRecord.status == status)
    if low_stock:
        query = query.filter(InventoryRecord.stock <= InventoryRecord.threshold)
    if out_of_stock:
        query = query.filter(InventoryRecord.stock == 0)
    query = query.order_by(InventoryRecord.updated_at.desc(), InventoryRecord.id.desc())
    return paginate(query, page=page, limit=limit, default_limit=25)


def low_stock_records() -> list[dict]:
    records = (
        db.session.query(InventoryRecord)
        .filter(InventoryRecord.status == "Active", InventoryRecord.stock <= InventoryRecord.threshold)
        .order_by(InventoryRecord.stock.asc(), InventoryRecord.id.asc())
        .all()
    )
    return [r.to_dict() for r in records]


def out_of_stock_records() -> list[dict]:
    records = (
        db.session.query(InventoryRecord)
        .filter(InventoryRecord.status != "Discontinued", InventoryRecord.stock == 0)
        .order_by(InventoryRecord.name.asc(), InventoryRecord.id.asc())
        .all()
    )
    return [r.to_dict() for r in records]


def _link_product(record: InventoryRecord, product_id: int) -> None:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    other = db.session.query(InventoryRecord).filter(
        InventoryRecord.product_id == product_id,
        InventoryRecord.id != record.id,
    ).first()
    if other is not None:
        raise ConflictError(f"Product {product_id} is already tracked by {other.sku}")
    record.product = product
    product.threshold = record.threshold


def create_record(*, patch: dict, product_id: int | None = None, actor_id: int | None = None) -> InventoryRecord:
    """
    Create a record; a positive opening stock is ledgered as an IN
    movement "Initial stock entry". A linked product takes the record's
    stock and threshold.
    """
    patch = dict(patch)
    sku = patch.get("sku") or generate_sku(patch["name"])

    if db.session.query(InventoryRecord).filter(InventoryRecord.sku == sku).first():
        raise ConflictError("Inventory record with this SKU already exists")

    opening = patch.pop("stock", 0) or 0

    def _op():
        begin_immediate()
        record = InventoryRecord(sku=sku, stock=0)
        for k, v in patch.items():
            if k in RECORD_MUTABLE_FIELDS:
                setattr(record, k, v)
        if record.threshold is None:
            record.threshold = 10
        if record.reorder_point is None:
            record.reorder_point = record.threshold * 2
        db.session.add(record)

        if product_id is not None:
            _link_product(record, product_id)
            record.product.stock = 0

        if opening > 0:
            append_movement(record, MOVEMENT_IN, opening, "Initial stock entry", actor_id=actor_id)

        db.session.commit()
        return record

    try:
        record = run_with_retry(_op)
    except StorefrontError:
        db.session.rollback()
        raise

    current_app.logger.info("Inventory record %s created with %s on hand", record.sku, record.stock)
    return record


def update_record(
    record_id: int,
    *,
    patch: dict,
    product_id: int | None = None,
    reason: str | None = None,
    actor_id: int | None = None,
) -> InventoryRecord:
    """
    Update record fields. A new `stock` value is applied as an IN or OUT
    movement for the difference (reason defaults to "Stock adjustment").
    """
    patch = dict(patch)

    def _op():
        begin_immediate()
        record = get_record(record_id)

        if "sku" in patch and patch["sku"] != record.sku:
            clash = db.session.query(InventoryRecord).filter(
                InventoryRecord.sku == patch["sku"], InventoryRecord.id != record.id
            ).first()
            if clash:
                raise ConflictError("Inventory record with this SKU already exists")
            record.sku = patch["sku"]

        for k, v in patch.items():
            if k in RECORD_MUTABLE_FIELDS:
                setattr(record, k, v)

        if product_id is not None and product_id != record.product_id:
            _link_product(record, product_id)
            record.product.stock = record.stock
        elif record.product is not None and "threshold" in patch:
            record.product.threshold = record.threshold

        new_stock = patch.get("stock")
        if new_stock is not None and new_stock != record.stock:
            diff = new_stock - record.stock
            append_movement(
                record,
                MOVEMENT_IN if diff > 0 else MOVEMENT_OUT,
                abs(diff),
                (reason or "").strip() or DEFAULT_ADJUSTMENT_REASON,
                actor_id=actor_id,
            )

        db.session.commit()
        return record

    try:
        return run_with_retry(_op)
    except StorefrontError:
        db.session.rollback()
        raise


def delete_record(record_id: int) -> InventoryRecord:
    """Soft delete: the record is Discontinued, history stays."""
    record = get_record(record_id)
    record.status = "Discontinued"
    db.session.commit()
    current_app.logger.info("Inventory record %s discontinued", record.sku)
    return record


def add_movement(record_id: int, movement: dict, *, actor_id: int | None = None):
    record = get_record(record_id)
    return record_movement(
        record.sku,
        movement["type"],
        movement["quantity"],
        movement["reason"],
        actor_id=actor_id,
        reference=movement.get("reference"),
        notes=movement.get("notes"),
    )


def stock_check(record_id: int, *, physical_count: int, notes: str | None = None, actor_id: int | None = None) -> dict:
    """
    Reconcile the system balance with a physical count.

    A non-zero variance appends an ADJUSTMENT to the counted amount.
    """
    if physical_count < 0:
        raise ValidationError("physical_count must be >= 0")

    def _op():
        begin_immediate()
        record = get_record(record_id)
        system_count = record.stock
        variance = physical_count - system_count

        if variance != 0:
            append_movement(
                record,
                MOVEMENT_ADJUSTMENT,
                physical_count,
                f"Stock check adjustment. Variance: {variance}",
                actor_id=actor_id,
                notes=notes,
            )

        record.last_checked_at = utcnow()
        record.last_checked_by_user_id = actor_id
        record.last_physical_count = physical_count
        record.last_system_count = system_count
        record.last_variance = variance
        record.last_check_notes = notes
        db.session.commit()
        return record, variance

    try:
        record, variance = run_with_retry(_op)
    except StorefrontError:
        db.session.rollback()
        raise

    if variance:
        current_app.logger.warning("Stock check on %s found variance %s", record.sku, variance)
    return {"record": record.to_dict(), "variance": variance}
