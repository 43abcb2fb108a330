from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z, utcnow

SALE_COMPLETED = "Completed"
SALE_PENDING = "Pending"
SALE_CANCELLED = "Cancelled"
SALE_REFUNDED = "Refunded"
SALE_PARTIALLY_REFUNDED = "Partially Refunded"

SALE_STATUSES = (
    SALE_COMPLETED,
    SALE_PENDING,
    SALE_CANCELLED,
    SALE_REFUNDED,
    SALE_PARTIALLY_REFUNDED,
)

SALES_CHANNELS = ("Online", "In-Store", "Phone", "Email", "Social Media")

SALE_PAYMENT_METHODS = (
    "Credit Card",
    "Debit Card",
    "PayPal",
    "Bank Transfer",
    "Cash",
    "Store Credit",
    "Cash on Delivery",
)


class Sale(db.Model):
    """
    Financial record of a sale, entered manually or derived from a
    delivered Order (order_id, at most one sale per order).

    Derived amounts are computed once by sale_service and stored:
      gross  = sum(item totals)
      net    = gross - discount + tax
      cost   = sum(quantity * unit cost)
      profit = net - cost

    stock_applied is True when creating the sale consumed product stock;
    only those sales give stock back on cancellation/deletion.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.UniqueConstraint("order_id", name="uq_sales_order"),
        db.Index("ix_sales_status_sold", "status", "sold_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_number = db.Column(db.String(40), nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    order_number = db.Column(db.String(40), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    customer_name = db.Column(db.String(120), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_code = db.Column(db.String(32), nullable=True, index=True)

    gross_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    net_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)
    profit_cents = db.Column(db.Integer, nullable=False, default=0)
    profit_margin = db.Column(db.Float, nullable=False, default=0.0)

    status = db.Column(db.String(24), nullable=False, default=SALE_COMPLETED)
    sales_channel = db.Column(db.String(24), nullable=False, default="Online")
    payment_method = db.Column(db.String(32), nullable=False, default="Credit Card")
    region = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    stock_applied = db.Column(db.Boolean, nullable=False, default=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sold_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    order = db.relationship("Order", backref=db.backref("sale", uselist=False, lazy=True))
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} number={self.sale_number!r} status={self.status}>"

    @property
    def quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_number": self.sale_number,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "customer": {
                "id": self.customer_id,
                "name": self.customer_name,
                "email": self.customer_email,
                "customer_code": self.customer_code,
            },
            "items": [item.to_dict() for item in self.items],
            "quantity": self.quantity,
            "gross_cents": self.gross_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "net_cents": self.net_cents,
            "amount_cents": self.net_cents,
            "cost_cents": self.cost_cents,
            "profit_cents": self.profit_cents,
            "profit_margin": self.profit_margin,
            "status": self.status,
            "sales_channel": self.sales_channel,
            "payment_method": self.payment_method,
            "region": self.region,
            "notes": self.notes,
            "stock_applied": self.stock_applied,
            "sold_at": to_utc_z(self.sold_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SaleItem(db.Model):
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    product_name = db.Column(db.String(100), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cents": self.total_cents,
        }
