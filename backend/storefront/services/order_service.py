# Overview: Service-layer operations for orders; encapsulates business logic and database work.

"""
Orders: creation, lifecycle and stock release.

Creation validates every line before touching stock, then consumes each
product with a conditional UPDATE, all in one transaction. If any line
fails the whole unit of work is rolled back: no stock moves, no order row.

Lifecycle:
    Pending -> Processing -> Shipped -> Delivered
    Pending/Processing/Shipped -> Cancelled | Refunded
Delivered, Cancelled and Refunded are terminal.

Stock goes back exactly once, on cancellation or on deletion of an order
that was never released (Order.stock_released).
"""

from __future__ import annotations

import re
import secrets
import time

from flask import current_app
from sqlalchemy import func, or_

from ..errors import (
    InvalidTransitionError,
    NotFoundError,
    StorefrontError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, OrderItem, Product, Sale, User
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_DELIVERED,
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_REFUNDED,
    ORDER_SHIPPED,
    ORDER_STATUSES,
    PAYMENT_METHODS,
    PAYMENT_PENDING,
    PAYMENT_REFUNDED,
)
from ..validation import coerce_int, coerce_positive_int
from .concurrency import begin_immediate, run_with_retry
from .pagination import paginate
from .stock_service import aggregate_quantities, decrement_stock, ensure_available, restore_stock
from storefront.time_utils import parse_date_bound, utcnow

ALLOWED_TRANSITIONS = {
    ORDER_PENDING: {ORDER_PROCESSING, ORDER_CANCELLED, ORDER_REFUNDED},
    ORDER_PROCESSING: {ORDER_SHIPPED, ORDER_CANCELLED, ORDER_REFUNDED},
    ORDER_SHIPPED: {ORDER_DELIVERED, ORDER_CANCELLED, ORDER_REFUNDED},
    ORDER_DELIVERED: set(),
    ORDER_CANCELLED: set(),
    ORDER_REFUNDED: set(),
}

# Manual orders for a product name that is not in the catalog
LEGACY_UNIT_PRICE_CENTS = 1000

CUSTOMER_CODE_RE = re.compile(r"^[A-Z0-9]+$")

SHIPPING_FIELDS = {
    "full_name": "ship_full_name",
    "email": "ship_email",
    "phone": "ship_phone",
    "street": "ship_street",
    "city": "ship_city",
    "state": "ship_state",
    "zip_code": "ship_zip_code",
    "country": "ship_country",
}

ORDER_MUTABLE_FIELDS = {
    "payment_status", "payment_method", "customer_note", "admin_note",
    "tracking_number", "carrier", "tracking_url", "discount_code",
    *SHIPPING_FIELDS.values(),
}


def generate_number(prefix: str) -> str:
    """e.g. ORD-1760745600123-9F2C81AB"""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def normalize_customer_code(code) -> str:
    code = str(code or "").strip().upper()
    if not code or not CUSTOMER_CODE_RE.match(code):
        raise ValidationError("customer_code must be upper-case alphanumeric")
    return code


def shipping_columns(address: dict | None) -> dict:
    """Map a {full_name, street, ...} payload onto Order.ship_* columns."""
    if not address:
        return {}
    if not isinstance(address, dict):
        raise ValidationError("shipping_address must be an object")
    cols = {}
    for key, col in SHIPPING_FIELDS.items():
        if key in address:
            value = address[key]
            cols[col] = str(value).strip() if value is not None else None
    return cols


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def parse_lines(items) -> list[tuple[int, int]]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    lines = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        if raw.get("product_id") is None:
            raise ValidationError("Each item requires product_id")
        if raw.get("quantity") is None:
            raise ValidationError("Each item requires quantity")
        lines.append((
            coerce_int(raw["product_id"], "product_id"),
            coerce_positive_int(raw["quantity"], "quantity"),
        ))
    return lines


def load_and_check_lines(lines: list[tuple[int, int]]) -> list[tuple[Product, int]]:
    """
    Validate every line before anything is written.

    Lines for the same product are merged and the guard runs on the merged
    quantity. Returns (product, quantity) pairs in first-seen order.
    """
    totals = aggregate_quantities(lines)
    checked = []
    for product_id, quantity in totals.items():
        product = db.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise NotFoundError(f"Product {product_id} not found")
        ensure_available(product, quantity)
        checked.append((product, quantity))
    return checked


def build_order(
    *,
    customer_code: str,
    customer_id: int | None,
    checked_lines: list[tuple[Product, int]],
    prices: dict[int, int] | None = None,
    tax_cents: int = 0,
    shipping_cents: int = 0,
    discount_cents: int = 0,
    discount_code: str | None = None,
    payment_method: str = "Cash on Delivery",
    payment_status: str = PAYMENT_PENDING,
    payment_reference: str | None = None,
    address: dict | None = None,
    customer_note: str | None = None,
    actor_id: int | None = None,
) -> Order:
    """
    Consume stock for already-checked lines and stage the order snapshot.

    `prices` overrides the unit price per product id (cart prices at
    checkout). Caller owns the transaction.
    """
    order_number = generate_number("ORD")
    items = []

    for product, quantity in checked_lines:
        decrement_stock(
            product,
            quantity,
            reason=f"Order {order_number}",
            reference=order_number,
            actor_id=actor_id,
        )
        unit_price = (prices or {}).get(product.id, product.price_cents)
        items.append(OrderItem(
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            price_cents=unit_price,
            total_cents=unit_price * quantity,
        ))

    return _stage_order(
        order_number=order_number,
        customer_code=customer_code,
        customer_id=customer_id,
        items=items,
        tax_cents=tax_cents,
        shipping_cents=shipping_cents,
        discount_cents=discount_cents,
        discount_code=discount_code,
        payment_method=payment_method,
        payment_status=payment_status,
        payment_reference=payment_reference,
        address=address,
        customer_note=customer_note,
    )


def _stage_order(*, order_number, customer_code, customer_id, items, tax_cents, shipping_cents,
                 discount_cents, discount_code, payment_method, payment_status, payment_reference,
                 address, customer_note) -> Order:
    subtotal = sum(i.total_cents for i in items)
    total = subtotal + tax_cents + shipping_cents - discount_cents
    if total < 0:
        raise ValidationError("Discount cannot exceed the order amount")

    first = items[0]
    order = Order(
        order_number=order_number,
        customer_code=customer_code,
        customer_id=customer_id,
        product_name=first.product_name if len(items) == 1 else f"{first.product_name} (+{len(items) - 1} more)",
        quantity=sum(i.quantity for i in items),
        subtotal_cents=subtotal,
        tax_cents=tax_cents,
        shipping_cents=shipping_cents,
        discount_cents=discount_cents,
        discount_code=discount_code,
        total_cents=total,
        status=ORDER_PENDING,
        payment_status=payment_status,
        payment_method=payment_method,
        payment_reference=payment_reference,
        customer_note=customer_note,
        stock_released=False,
        placed_at=utcnow(),
        **shipping_columns(address),
    )
    order.items = items
    db.session.add(order)
    return order


def _amount(payload: dict, key: str) -> int:
    value = payload.get(key)
    if value is None:
        return 0
    n = coerce_int(value, key)
    if n < 0:
        raise ValidationError(f"{key} must be >= 0")
    return n


def _resolve_customer(user: User, payload: dict) -> tuple[str, int | None]:
    """Admins may place orders for any customer code; customers always order as themselves."""
    if user.is_admin and payload.get("customer_code"):
        code = normalize_customer_code(payload["customer_code"])
        owner = db.session.query(User).filter(User.customer_code == code).first()
        return code, owner.id if owner else None
    return normalize_customer_code(user.customer_code), user.id


def create_order(user: User, payload: dict) -> Order:
    """
    Place an order from either
      {"items": [{"product_id", "quantity"}, ...], ...}  or
      {"product_name", "quantity", ...}                  (legacy single item)

    Raises ValidationError, NotFoundError or InsufficientStockError; on any
    of them nothing is persisted.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    customer_code, customer_id = _resolve_customer(user, payload)

    payment_method = payload.get("payment_method") or "Cash on Delivery"
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")

    charges = {
        "tax_cents": _amount(payload, "tax_cents"),
        "shipping_cents": _amount(payload, "shipping_cents"),
        "discount_cents": _amount(payload, "discount_cents"),
    }
    common = dict(
        customer_code=customer_code,
        customer_id=customer_id,
        discount_code=(payload.get("discount_code") or None),
        payment_method=payment_method,
        address=payload.get("shipping_address"),
        customer_note=payload.get("customer_note"),
        **charges,
    )

    if "items" in payload:
        lines = parse_lines(payload["items"])
        legacy_name = None
    else:
        legacy_name = str(payload.get("product_name") or "").strip()
        if not legacy_name:
            raise ValidationError("Either items or product_name is required")
        if payload.get("quantity") is None:
            raise ValidationError("quantity is required")
        legacy_qty = coerce_positive_int(payload["quantity"], "quantity")
        product = db.session.query(Product).filter(
            func.lower(Product.name) == legacy_name.lower(),
            Product.is_active.is_(True),
        ).first()
        lines = [(product.id, legacy_qty)] if product else None

    def _op():
        begin_immediate()
        if lines is None:
            # Unknown product: recorded at the flat legacy price, no stock involved
            order = _stage_order(
                order_number=generate_number("ORD"),
                items=[OrderItem(
                    product_id=None,
                    product_name=legacy_name,
                    quantity=legacy_qty,
                    price_cents=LEGACY_UNIT_PRICE_CENTS,
                    total_cents=LEGACY_UNIT_PRICE_CENTS * legacy_qty,
                )],
                payment_status=PAYMENT_PENDING,
                payment_reference=None,
                **common,
            )
        else:
            checked = load_and_check_lines(lines)
            order = build_order(checked_lines=checked, actor_id=user.id, **common)
        db.session.commit()
        return order

    try:
        order = run_with_retry(_op)
    except StorefrontError:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Order %s created for %s: %s item(s), total %s cents",
        order.order_number, order.customer_code, len(order.items), order.total_cents,
    )
    return order


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_order(order_id: int, user: User | None = None) -> Order:
    """Owner or admin only; anyone else gets NotFound."""
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    if user is not None and not user.is_admin and order.customer_id != user.id:
        raise NotFoundError("Order not found")
    return order


def _filtered(query, *, search=None, status=None, start_date=None, end_date=None):
    if search:
        term = search.strip()
        query = query.filter(or_(
            Order.customer_code.icontains(term, autoescape=True),
            Order.product_name.icontains(term, autoescape=True),
            Order.order_number.icontains(term, autoescape=True),
        ))
    if status and status != "All":
        if status not in ORDER_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")
        query = query.filter(Order.status == status)
    try:
        start = parse_date_bound(start_date)
        end = parse_date_bound(end_date, end_of_day=True)
    except ValueError:
        raise ValidationError("startDate/endDate must be ISO-8601 dates")
    if start is not None:
        query = query.filter(Order.placed_at >= start)
    if end is not None:
        query = query.filter(Order.placed_at <= end)
    return query.order_by(Order.placed_at.desc(), Order.id.desc())


def list_orders(*, search=None, status=None, start_date=None, end_date=None, page=None, limit=None) -> dict:
    query = _filtered(
        db.session.query(Order),
        search=search, status=status, start_date=start_date, end_date=end_date,
    )
    return paginate(query, page=page, limit=limit)


def list_user_orders(user_id: int, *, status=None, page=None, limit=None) -> dict:
    query = _filtered(db.session.query(Order).filter(Order.customer_id == user_id), status=status)
    return paginate(query, page=page, limit=limit, default_limit=10)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def release_stock(order: Order, *, reason: str, actor_id: int | None = None) -> bool:
    """
    Give the order's quantities back, once. Returns False when already
    released. Caller owns the transaction.
    """
    if order.stock_released:
        return False
    for item in order.items:
        restore_stock(
            item.product_id,
            item.quantity,
            reason=reason,
            reference=order.order_number,
            actor_id=actor_id,
        )
    order.stock_released = True
    return True


def update_status(order_id: int, status: str, *, actor_id: int | None = None, tracking: dict | None = None) -> Order:
    """
    Move an order along its lifecycle.

    Cancelled gives stock back (once); Refunded marks the payment refunded;
    Shipped accepts tracking_number/carrier/tracking_url; Delivered stamps
    delivered_at.
    """
    if status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")

    def _op():
        begin_immediate()
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if not can_transition(order.status, status):
            raise InvalidTransitionError(
                f"Cannot change order status from {order.status} to {status}",
                details={"current_status": order.status, "requested_status": status},
            )

        if status == ORDER_CANCELLED:
            release_stock(order, reason=f"Order {order.order_number} cancelled", actor_id=actor_id)
        elif status == ORDER_REFUNDED:
            order.payment_status = PAYMENT_REFUNDED
        elif status == ORDER_SHIPPED and tracking:
            for key in ("tracking_number", "carrier", "tracking_url"):
                if tracking.get(key):
                    setattr(order, key, str(tracking[key]).strip())
        elif status == ORDER_DELIVERED:
            order.delivered_at = utcnow()

        previous = order.status
        order.status = status
        db.session.commit()
        current_app.logger.info("Order %s: %s -> %s", order.order_number, previous, status)
        return order

    try:
        return run_with_retry(_op)
    except StorefrontError:
        db.session.rollback()
        raise


def update_order(order_id: int, patch: dict) -> Order:
    """Update non-stock fields (shipping, notes, tracking, payment info)."""
    order = get_order(order_id)
    for k, v in patch.items():
        if k in ORDER_MUTABLE_FIELDS:
            setattr(order, k, v)
    db.session.commit()
    return order


def delete_order(order_id: int, *, actor_id: int | None = None) -> None:
    """
    Delete an order; stock that was never released goes back first.
    A sale recorded for the order keeps its own snapshot.
    """
    def _op():
        begin_immediate()
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")

        released = release_stock(order, reason=f"Order {order.order_number} deleted", actor_id=actor_id)

        sale = db.session.query(Sale).filter(Sale.order_id == order.id).first()
        if sale is not None:
            sale.order_id = None

        number = order.order_number
        db.session.delete(order)
        db.session.commit()
        current_app.logger.info("Order %s deleted (stock released: %s)", number, released)

    try:
        run_with_retry(_op)
    except StorefrontError:
        db.session.rollback()
        raise
