# Overview: Service-layer operations for stock; the movement ledger and the availability guard.

"""
Stock ledger and stock guard.

Ledger: every balance change of an InventoryRecord is an appended
StockMovement (IN/OUT/ADJUSTMENT/TRANSFER/RETURN) written in the same
transaction as the new balance. Linked products mirror the balance.

Guard: ensure_available() is the read-then-decide check run before any
customer-facing consumption. The consumption itself is decrement_stock(),
a conditional UPDATE whose affected-row count is the success signal, so a
concurrent buyer can never push Product.stock below zero.

Functions marked "(no commit)" only stage work in the current session;
the caller owns the transaction (order/payment/sale flows commit once
after all lines are applied).
"""

from __future__ import annotations

from flask import current_app

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryRecord, Product, StockMovement
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_RETURN,
    MOVEMENT_TRANSFER,
    MOVEMENT_TYPES,
)
from ..validation import MAX_REASON_LENGTH
from .concurrency import lock_for_update, run_with_retry


def apply_movement(previous: int, movement_type: str, quantity: int) -> int:
    """
    Balance after one movement.

    IN/RETURN add; OUT/TRANSFER subtract and clamp at 0; ADJUSTMENT sets
    the balance to `quantity`.
    """
    if movement_type in (MOVEMENT_IN, MOVEMENT_RETURN):
        return previous + quantity
    if movement_type in (MOVEMENT_OUT, MOVEMENT_TRANSFER):
        return max(0, previous - quantity)
    if movement_type == MOVEMENT_ADJUSTMENT:
        return max(0, quantity)
    raise ValidationError(f"type must be one of: {', '.join(MOVEMENT_TYPES)}")


def _validate_movement_args(movement_type: str, quantity, reason: str) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(MOVEMENT_TYPES)}")
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise ValidationError("quantity must be an integer")
    if quantity < 0:
        raise ValidationError("quantity must be >= 0")
    if quantity == 0 and movement_type != MOVEMENT_ADJUSTMENT:
        raise ValidationError(f"quantity must be >= 1 for {movement_type}")
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")
    if len(str(reason).strip()) > MAX_REASON_LENGTH:
        raise ValidationError(f"reason exceeds max length {MAX_REASON_LENGTH}")


def append_movement(
    record: InventoryRecord,
    movement_type: str,
    quantity: int,
    reason: str,
    *,
    actor_id: int | None = None,
    reference: str | None = None,
    notes: str | None = None,
    sync_product: bool = True,
) -> StockMovement:
    """
    Stage one movement on `record` and its new balance (no commit).

    With sync_product, a linked Product takes the same balance.
    """
    _validate_movement_args(movement_type, quantity, reason)

    previous = record.stock
    new_stock = apply_movement(previous, movement_type, quantity)

    movement = StockMovement(
        record=record,
        type=movement_type,
        quantity=quantity,
        previous_stock=previous,
        new_stock=new_stock,
        reason=str(reason).strip(),
        reference=reference,
        notes=notes,
        performed_by_user_id=actor_id,
    )
    db.session.add(movement)
    record.stock = new_stock

    if sync_product and record.product is not None:
        record.product.stock = new_stock

    if previous > record.threshold >= new_stock:
        current_app.logger.warning(
            "Stock for %s dropped to %s (threshold %s)", record.sku, new_stock, record.threshold
        )

    return movement


def get_record_by_sku(sku: str) -> InventoryRecord:
    record = db.session.query(InventoryRecord).filter(
        InventoryRecord.sku == (sku or "").strip().upper()
    ).first()
    if not record:
        raise NotFoundError(f"No inventory record for SKU {sku}")
    return record


def record_movement(
    sku: str,
    movement_type: str,
    quantity: int,
    reason: str,
    *,
    actor_id: int | None = None,
    reference: str | None = None,
    notes: str | None = None,
) -> StockMovement:
    """
    Append a movement for `sku` and persist the new balance atomically.

    Raises ValidationError for a malformed movement and NotFoundError for
    an unknown SKU.
    """
    movement_type = (movement_type or "").strip().upper()
    _validate_movement_args(movement_type, quantity, reason)

    def _op():
        record = lock_for_update(
            db.session.query(InventoryRecord).filter(
                InventoryRecord.sku == (sku or "").strip().upper()
            )
        ).first()
        if not record:
            raise NotFoundError(f"No inventory record for SKU {sku}")

        movement = append_movement(
            record,
            movement_type,
            quantity,
            reason,
            actor_id=actor_id,
            reference=reference,
            notes=notes,
        )
        db.session.commit()
        current_app.logger.info(
            "Recorded %s %s for %s: %s -> %s",
            movement.type, movement.quantity, record.sku, movement.previous_stock, movement.new_stock,
        )
        return movement

    try:
        return run_with_retry(_op)
    except (ValidationError, NotFoundError):
        db.session.rollback()
        raise


def current_stock(sku: str) -> int:
    return get_record_by_sku(sku).stock


def ensure_available(product: Product, requested_qty: int) -> None:
    """Raise InsufficientStockError when `product` cannot cover `requested_qty`."""
    if requested_qty < 1:
        raise ValidationError("quantity must be >= 1")
    if product.stock < requested_qty:
        raise InsufficientStockError(product.id, product.name, requested_qty, product.stock)


def _mirror_to_record(
    product: Product,
    movement_type: str,
    quantity: int,
    reason: str,
    *,
    actor_id: int | None,
    reference: str | None,
) -> None:
    record = product.inventory_record
    if record is None:
        return
    movement = StockMovement(
        record=record,
        type=movement_type,
        quantity=quantity,
        previous_stock=record.stock,
        new_stock=product.stock,
        reason=reason,
        reference=reference,
        performed_by_user_id=actor_id,
    )
    db.session.add(movement)
    record.stock = product.stock


def decrement_stock(
    product: Product,
    quantity: int,
    *,
    reason: str,
    reference: str | None = None,
    actor_id: int | None = None,
) -> None:
    """
    Consume `quantity` units of `product` (no commit).

    Runs UPDATE ... SET stock = stock - q WHERE id = :id AND stock >= q.
    Zero affected rows means someone else got there first: raises
    InsufficientStockError with the freshly read availability.
    """
    if quantity < 1:
        raise ValidationError("quantity must be >= 1")

    previous = product.stock
    updated = db.session.query(Product).filter(
        Product.id == product.id,
        Product.stock >= quantity,
    ).update(
        {
            Product.stock: Product.stock - quantity,
            Product.version_id: Product.version_id + 1,
        },
        synchronize_session=False,
    )
    db.session.refresh(product)

    if updated == 0:
        raise InsufficientStockError(product.id, product.name, quantity, product.stock)

    _mirror_to_record(product, MOVEMENT_OUT, quantity, reason, actor_id=actor_id, reference=reference)

    if previous > product.threshold >= product.stock:
        current_app.logger.warning(
            "Product %s (%s) is low on stock: %s left", product.id, product.sku, product.stock
        )


def restore_stock(
    product_id: int | None,
    quantity: int,
    *,
    reason: str,
    reference: str | None = None,
    actor_id: int | None = None,
) -> bool:
    """
    Give `quantity` units back to a product (no commit).

    Returns False when the product no longer exists; the snapshot line
    is then left as history only.
    """
    if product_id is None or quantity < 1:
        return False

    updated = db.session.query(Product).filter(Product.id == product_id).update(
        {
            Product.stock: Product.stock + quantity,
            Product.version_id: Product.version_id + 1,
        },
        synchronize_session=False,
    )
    if updated == 0:
        current_app.logger.warning("Cannot restore %s units: product %s no longer exists", quantity, product_id)
        return False

    product = db.session.get(Product, product_id)
    db.session.refresh(product)
    _mirror_to_record(product, MOVEMENT_RETURN, quantity, reason, actor_id=actor_id, reference=reference)
    return True


def aggregate_quantities(lines) -> dict[int, int]:
    """Sum requested quantities per product id from (product_id, quantity) pairs."""
    totals: dict[int, int] = {}
    for product_id, quantity in lines:
        totals[product_id] = totals.get(product_id, 0) + quantity
    return totals
