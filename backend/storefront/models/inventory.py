from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from storefront.time_utils import to_utc_z, utcnow

MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_TRANSFER = "TRANSFER"
MOVEMENT_RETURN = "RETURN"

MOVEMENT_TYPES = (
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_TRANSFER,
    MOVEMENT_RETURN,
)

INVENTORY_STATUSES = ("Active", "Inactive", "Discontinued")


class InventoryRecord(db.Model):
    """
    Stock-keeping record, one per SKU.

    The record owns the movement history; when linked to a Product
    (product_id, 1:1) every balance change is mirrored onto Product.stock
    in the same transaction.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_inventory_records_sku"),
        db.UniqueConstraint("product_id", name="uq_inventory_records_product"),
        db.CheckConstraint("stock >= 0", name="ck_inventory_records_stock_nonnegative"),
        db.Index("ix_inventory_records_status_stock", "status", "stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    threshold = db.Column(db.Integer, nullable=False, default=10)
    unit = db.Column(db.String(16), nullable=False, default="g")

    cost_price_cents = db.Column(db.Integer, nullable=True)
    selling_price_cents = db.Column(db.Integer, nullable=True)

    supplier_name = db.Column(db.String(120), nullable=True)
    warehouse = db.Column(db.String(120), nullable=False, default="Main Warehouse")

    status = db.Column(db.String(16), nullable=False, default="Active", index=True)
    reorder_point = db.Column(db.Integer, nullable=True)
    max_stock = db.Column(db.Integer, nullable=True)

    last_checked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_checked_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    last_physical_count = db.Column(db.Integer, nullable=True)
    last_system_count = db.Column(db.Integer, nullable=True)
    last_variance = db.Column(db.Integer, nullable=True)
    last_check_notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    product = db.relationship("Product", backref=db.backref("inventory_record", uselist=False, lazy=True))
    movements = db.relationship(
        "StockMovement",
        back_populates="record",
        order_by="StockMovement.id",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryRecord id={self.id} sku={self.sku!r} stock={self.stock}>"

    @property
    def stock_status(self) -> str:
        if self.stock == 0:
            return "Out of Stock"
        if self.stock <= self.threshold:
            return "Low Stock"
        if self.max_stock and self.stock >= self.max_stock:
            return "Overstock"
        return "In Stock"

    @property
    def stock_value_cents(self) -> int:
        return self.stock * (self.cost_price_cents or 0)

    def to_dict(self, include_movements: bool = False) -> dict:
        data = {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "product_id": self.product_id,
            "stock": self.stock,
            "threshold": self.threshold,
            "unit": self.unit,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "supplier_name": self.supplier_name,
            "warehouse": self.warehouse,
            "status": self.status,
            "reorder_point": self.reorder_point,
            "max_stock": self.max_stock,
            "stock_status": self.stock_status,
            "is_low_stock": self.stock <= self.threshold,
            "is_out_of_stock": self.stock == 0,
            "stock_value_cents": self.stock_value_cents,
            "last_stock_check": {
                "checked_at": to_utc_z(self.last_checked_at),
                "checked_by_user_id": self.last_checked_by_user_id,
                "physical_count": self.last_physical_count,
                "system_count": self.last_system_count,
                "variance": self.last_variance,
                "notes": self.last_check_notes,
            } if self.last_checked_at else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_movements:
            data["movements"] = [m.to_dict() for m in self.movements]
        return data


class StockMovement(db.Model):
    """
    One ledgered stock change.

    IMMUTABLE: rows are append-only; the ORM listeners below reject UPDATE
    and DELETE. Corrections are new movements (ADJUSTMENT / RETURN).

    quantity is the absolute amount requested; for ADJUSTMENT it is the
    target balance. previous_stock/new_stock record what was applied.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_stock_movements_quantity_nonnegative"),
        db.CheckConstraint("new_stock >= 0", name="ck_stock_movements_new_stock_nonnegative"),
        db.Index("ix_stock_movements_record_occurred", "record_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    record_id = db.Column(db.Integer, db.ForeignKey("inventory_records.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(200), nullable=False)
    reference = db.Column(db.String(64), nullable=True, index=True)
    notes = db.Column(db.Text, nullable=True)
    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    record = db.relationship("InventoryRecord", back_populates="movements")

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} {self.type} qty={self.quantity} "
            f"{self.previous_stock}->{self.new_stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "record_id": self.record_id,
            "type": self.type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "reference": self.reference,
            "notes": self.notes,
            "performed_by_user_id": self.performed_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class LedgerImmutabilityError(RuntimeError):
    """Raised when code tries to rewrite or remove a stock movement."""


@event.listens_for(StockMovement, "before_update")
def _prevent_movement_update(mapper, connection, target):
    raise LedgerImmutabilityError(f"stock movement {target.id} is append-only and cannot be modified")


@event.listens_for(StockMovement, "before_delete")
def _prevent_movement_delete(mapper, connection, target):
    raise LedgerImmutabilityError(f"stock movement {target.id} is append-only and cannot be deleted")
