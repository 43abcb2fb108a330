# Overview: Service-layer operations for sales; encapsulates business logic and database work.

"""
Sales records.

Manual sales consume stock for lines linked to a product (guard +
conditional decrement, one transaction). Sales derived from a delivered
order copy the order snapshot and move no stock: the order already did.

Stock consumed by a sale (stock_applied) is given back exactly once, when
the sale is cancelled or deleted.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..errors import ConflictError, NotFoundError, StorefrontError, ValidationError
from ..extensions import db
from ..models import Order, Product, Sale, SaleItem
from ..models.orders import ORDER_DELIVERED
from ..models.sales import SALE_CANCELLED, SALE_COMPLETED
from ..validation import coerce_int, coerce_positive_int
from .concurrency import begin_immediate, run_with_retry
from .order_service import generate_number
from .pagination import paginate
from .stock_service import decrement_stock, ensure_available, restore_stock
from storefront.time_utils import parse_date_bound

SALE_MUTABLE_FIELDS = {
    "customer_name", "customer_email", "customer_code", "sales_channel",
    "payment_method", "region", "notes", "discount_cents", "tax_cents", "sold_at",
}


def compute_totals(sale: Sale) -> None:
    """
    gross = sum(line totals); net = gross - discount + tax;
    cost = sum(qty * unit cost); profit = net - cost;
    margin = profit / cost * 100 (0 without cost).
    """
    gross = sum(i.total_cents for i in sale.items)
    net = gross - (sale.discount_cents or 0) + (sale.tax_cents or 0)
    if net < 0:
        raise ValidationError("Discount cannot exceed the sale amount")
    cost = sum(i.quantity * (i.unit_cost_cents or 0) for i in sale.items)
    profit = net - cost

    sale.gross_cents = gross
    sale.net_cents = net
    sale.cost_cents = cost
    sale.profit_cents = profit
    sale.profit_margin = round(profit / cost * 100, 2) if cost > 0 else 0.0


def _unit_cost(product: Product | None) -> int:
    if product is not None and product.inventory_record is not None:
        return product.inventory_record.cost_price_cents or 0
    return 0


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale not found")
    return sale


def list_sales(
    *,
    search: str | None = None,
    status: str | None = None,
    sales_channel: str | None = None,
    payment_method: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> dict:
    query = db.session.query(Sale)
    if search:
        term = search.strip()
        query = query.filter(or_(
            Sale.sale_number.icontains(term, autoescape=True),
            Sale.order_number.icontains(term, autoescape=True),
            Sale.customer_name.icontains(term, autoescape=True),
            Sale.customer_code.icontains(term, autoescape=True),
        ))
    if status and status != "All":
        query = query.filter(Sale.status == status)
    if sales_channel and sales_channel != "All":
        query = query.filter(Sale.sales_channel == sales_channel)
    if payment_method and payment_method != "All":
        query = query.filter(Sale.payment_method == payment_method)
    try:
        start = parse_date_bound(start_date)
        end = parse_date_bound(end_date, end_of_day=True)
    except ValueError:
        raise ValidationError("startDate/endDate must be ISO-8601 dates")
    if start is not None:
        query = query.filter(Sale.sold_at >= start)
    if end is not None:
        query = query.filter(Sale.sold_at <= end)
    query = query.order_by(Sale.sold_at.desc(), Sale.id.desc())
    return paginate(query, page=page, limit=limit, default_limit=25)


def _parse_sale_lines(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    lines = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        if raw.get("quantity") is None:
            raise ValidationError("Each item requires quantity")
        line = {
            "product_id": coerce_int(raw["product_id"], "product_id") if raw.get("product_id") is not None else None,
            "product_name": str(raw.get("product_name") or "").strip() or None,
            "quantity": coerce_positive_int(raw["quantity"], "quantity"),
            "unit_price_cents": None,
            "unit_cost_cents": None,
        }
        for key in ("unit_price_cents", "unit_cost_cents"):
            if raw.get(key) is not None:
                value = coerce_int(raw[key], key)
                if value < 0:
                    raise ValidationError(f"{key} must be >= 0")
                line[key] = value
        if line["product_id"] is None:
            if not line["product_name"]:
                raise ValidationError("Items without product_id require product_name")
            if line["unit_price_cents"] is None:
                raise ValidationError("Items without product_id require unit_price_cents")
        lines.append(line)
    return lines


def create_sale(*, patch: dict, items, actor_id: int | None = None) -> Sale:
    """
    Record a manual sale.

    Lines linked to a product are checked against stock first (all of
    them), then consumed; any failure leaves stock and sales untouched.
    """
    lines = _parse_sale_lines(items)

    def _op():
        begin_immediate()
        sale = Sale(sale_number=generate_number("SALE"), status=SALE_COMPLETED, created_by_user_id=actor_id)
        for k, v in patch.items():
            if k in SALE_MUTABLE_FIELDS:
                setattr(sale, k, v)

        wanted: dict[int, int] = {}
        products: dict[int, Product] = {}
        for line in lines:
            pid = line["product_id"]
            if pid is None:
                continue
            product = db.session.get(Product, pid)
            if product is None or not product.is_active:
                raise NotFoundError(f"Product {pid} not found")
            products[pid] = product
            wanted[pid] = wanted.get(pid, 0) + line["quantity"]
        for pid, qty in wanted.items():
            ensure_available(products[pid], qty)

        for pid, qty in wanted.items():
            decrement_stock(
                products[pid],
                qty,
                reason=f"Sale {sale.sale_number}",
                reference=sale.sale_number,
                actor_id=actor_id,
            )

        for line in lines:
            product = products.get(line["product_id"])
            unit_price = line["unit_price_cents"]
            if unit_price is None:
                unit_price = product.price_cents
            unit_cost = line["unit_cost_cents"]
            if unit_cost is None:
                unit_cost = _unit_cost(product)
            sale.items.append(SaleItem(
                product_id=product.id if product else None,
                product_name=product.name if product else line["product_name"],
                sku=product.sku if product else None,
                quantity=line["quantity"],
                unit_price_cents=unit_price,
                unit_cost_cents=unit_cost,
                total_cents=unit_price * line["quantity"],
            ))

        sale.stock_applied = bool(wanted)
        compute_totals(sale)
        db.session.add(sale)
        db.session.commit()
        return sale

    try:
        sale = run_with_retry(_op)
    except StorefrontError:
        db.session.rollback()
        raise

    current_app.logger.info("Sale %s recorded: %s cents", sale.sale_number, sale.net_cents)
    return sale


def create_sale_from_order(order_id: int, *, actor_id: int | None = None) -> Sale:
    """Record the sale for a delivered order (one per order, no stock change)."""
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    if order.status != ORDER_DELIVERED:
        raise ConflictError(
            "Only delivered orders can be recorded as sales",
            details={"order_status": order.status},
        )
    if db.session.query(Sale).filter(Sale.order_id == order.id).first():
        raise ConflictError("A sale already exists for this order")

    sale = Sale(
        sale_number=generate_number("SALE"),
        order_id=order.id,
        order_number=order.order_number,
        customer_id=order.customer_id,
        customer_name=order.ship_full_name or (order.customer.name if order.customer else None),
        customer_email=order.ship_email or (order.customer.email if order.customer else None),
        customer_code=order.customer_code,
        discount_cents=order.discount_cents,
        tax_cents=order.tax_cents,
        status=SALE_COMPLETED,
        sales_channel="Online",
        payment_method=order.payment_method,
        region=order.ship_state or order.ship_city,
        sold_at=order.delivered_at or order.placed_at,
        stock_applied=False,
        created_by_user_id=actor_id,
    )
    for item in order.items:
        product = db.session.get(Product, item.product_id) if item.product_id else None
        sale.items.append(SaleItem(
            product_id=item.product_id,
            product_name=item.product_name,
            sku=product.sku if product else None,
            quantity=item.quantity,
            unit_price_cents=item.price_cents,
            unit_cost_cents=_unit_cost(product),
            total_cents=item.total_cents,
        ))
    compute_totals(sale)

    db.session.add(sale)
    db.session.commit()
    current_app.logger.info("Sale %s recorded for order %s", sale.sale_number, order.order_number)
    return sale


def _release(sale: Sale, *, reason: str, actor_id: int | None) -> None:
    if not sale.stock_applied:
        return
    for item in sale.items:
        restore_stock(item.product_id, item.quantity, reason=reason, reference=sale.sale_number, actor_id=actor_id)
    sale.stock_applied = False


def update_sale(sale_id: int, *, patch: dict, actor_id: int | None = None) -> Sale:
    """
    Update non-stock fields. Cancelling a sale gives its applied stock back;
    cancelled sales cannot be reopened.
    """
    def _op():
        begin_immediate()
        sale = get_sale(sale_id)
        status = patch.get("status")

        if sale.status == SALE_CANCELLED and status is not None and status != SALE_CANCELLED:
            raise ConflictError("Cancelled sales cannot be reopened")

        for k, v in patch.items():
            if k in SALE_MUTABLE_FIELDS:
                setattr(sale, k, v)

        if status is not None and status != sale.status:
            if status == SALE_CANCELLED:
                _release(sale, reason=f"Sale {sale.sale_number} cancelled", actor_id=actor_id)
            sale.status = status

        compute_totals(sale)
        db.session.commit()
        return sale

    try:
        return run_with_retry(_op)
    except StorefrontError:
        db.session.rollback()
        raise


def delete_sale(sale_id: int, *, actor_id: int | None = None) -> None:
    def _op():
        begin_immediate()
        sale = get_sale(sale_id)
        _release(sale, reason=f"Sale {sale.sale_number} deleted", actor_id=actor_id)
        number = sale.sale_number
        db.session.delete(sale)
        db.session.commit()
        current_app.logger.info("Sale %s deleted", number)

    try:
        run_with_retry(_op)
    except StorefrontError:
        db.session.rollback()
        raise
