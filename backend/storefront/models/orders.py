from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z, utcnow

ORDER_PENDING = "Pending"
ORDER_PROCESSING = "Processing"
ORDER_SHIPPED = "Shipped"
ORDER_DELIVERED = "Delivered"
ORDER_CANCELLED = "Cancelled"
ORDER_REFUNDED = "Refunded"

ORDER_STATUSES = (
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
    ORDER_REFUNDED,
)

PAYMENT_PENDING = "Pending"
PAYMENT_PAID = "Paid"
PAYMENT_FAILED = "Failed"
PAYMENT_REFUNDED = "Refunded"

PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_REFUNDED)

PAYMENT_METHODS = (
    "Credit Card",
    "Debit Card",
    "PayPal",
    "Bank Transfer",
    "Cash on Delivery",
)


class Cart(db.Model):
    """Per-user shopping cart, created lazily on first access."""
    __tablename__ = "carts"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_carts_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    items = db.relationship(
        "CartItem",
        back_populates="cart",
        order_by="CartItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def subtotal_cents(self) -> int:
        return sum(item.price_cents * item.quantity for item in self.items)

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "item_count": len(self.items),
            "total_quantity": self.total_quantity,
            "subtotal_cents": self.subtotal_cents,
            "updated_at": to_utc_z(self.updated_at),
        }


class CartItem(db.Model):
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
        db.CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)

    cart = db.relationship("Cart", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        product = self.product
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "line_total_cents": self.price_cents * self.quantity,
            "product": {
                "name": product.name,
                "sku": product.sku,
                "price_cents": product.price_cents,
                "stock": product.stock,
                "unit": product.unit,
            } if product else None,
        }


class Order(db.Model):
    """
    Order snapshot.

    Item names and prices are copied at purchase time and never re-derived
    from Product. subtotal equals the sum of item totals and
    total = subtotal + tax + shipping - discount.

    stock_released flips once when the decremented quantities are given
    back (cancellation or deletion) so a release cannot happen twice.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.UniqueConstraint("payment_reference", name="uq_orders_payment_reference"),
        db.Index("ix_orders_status_placed", "status", "placed_at"),
        db.Index("ix_orders_customer_placed", "customer_id", "placed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(40), nullable=False)

    customer_code = db.Column(db.String(32), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Legacy single-item summary fields
    product_name = db.Column(db.String(100), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_code = db.Column(db.String(40), nullable=True)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING)
    payment_method = db.Column(db.String(32), nullable=False, default="Cash on Delivery")
    payment_reference = db.Column(db.String(128), nullable=True)

    ship_full_name = db.Column(db.String(120), nullable=True)
    ship_email = db.Column(db.String(255), nullable=True)
    ship_phone = db.Column(db.String(32), nullable=True)
    ship_street = db.Column(db.String(255), nullable=True)
    ship_city = db.Column(db.String(100), nullable=True)
    ship_state = db.Column(db.String(100), nullable=True)
    ship_zip_code = db.Column(db.String(20), nullable=True)
    ship_country = db.Column(db.String(100), nullable=True)

    tracking_number = db.Column(db.String(100), nullable=True)
    carrier = db.Column(db.String(100), nullable=True)
    tracking_url = db.Column(db.String(255), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer_note = db.Column(db.Text, nullable=True)
    admin_note = db.Column(db.Text, nullable=True)

    stock_released = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    placed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("User", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_code": self.customer_code,
            "customer_id": self.customer_id,
            "items": [item.to_dict() for item in self.items],
            "product_name": self.product_name,
            "quantity": self.quantity,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "discount_cents": self.discount_cents,
            "discount_code": self.discount_code,
            "total_cents": self.total_cents,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "shipping_address": {
                "full_name": self.ship_full_name,
                "email": self.ship_email,
                "phone": self.ship_phone,
                "street": self.ship_street,
                "city": self.ship_city,
                "state": self.ship_state,
                "zip_code": self.ship_zip_code,
                "country": self.ship_country,
            },
            "tracking": {
                "tracking_number": self.tracking_number,
                "carrier": self.carrier,
                "tracking_url": self.tracking_url,
                "delivered_at": to_utc_z(self.delivered_at),
            },
            "customer_note": self.customer_note,
            "admin_note": self.admin_note,
            "stock_released": self.stock_released,
            "placed_at": to_utc_z(self.placed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    product_name = db.Column(db.String(100), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "total_cents": self.total_cents,
        }
