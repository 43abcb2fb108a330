# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Checkout through the payment gateway.

create_intent:  cart must be non-empty and fully in stock; the intent
                amount is cart subtotal + shipping (cents).
confirm:        the gateway must report the intent as opened for this
                customer and succeeded for the expected amount; then stock is re-validated, every line is
                consumed, the order snapshot is written and the cart is
                cleared, in one transaction.

The intent id is stored as Order.payment_reference (unique). Confirming
an already-used reference returns the existing order and changes nothing.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, PaymentGatewayError, StorefrontError, ValidationError
from ..extensions import db, get_payment_gateway
from ..models import Cart, Order, Product, User
from ..models.orders import PAYMENT_PAID
from .concurrency import begin_immediate, run_with_retry
from .order_service import build_order, list_user_orders, load_and_check_lines, normalize_customer_code
from .payment_gateway import INTENT_SUCCEEDED
from .stock_service import ensure_available


def _nonempty_cart(user_id: int) -> Cart:
    cart = db.session.query(Cart).filter(Cart.user_id == user_id).first()
    if cart is None or not cart.items:
        raise ValidationError("Cart is empty")
    return cart


def _shipping_cents() -> int:
    return int(current_app.config.get("SHIPPING_COST_CENTS", 500))


def create_intent(user: User) -> dict:
    """Validate the cart and open a payment intent for subtotal + shipping."""
    cart = _nonempty_cart(user.id)

    for item in cart.items:
        product = db.session.get(Product, item.product_id)
        if product is None or not product.is_active:
            raise NotFoundError(f"Product {item.product_id} not found")
        ensure_available(product, item.quantity)

    subtotal = cart.subtotal_cents
    shipping = _shipping_cents()
    amount = subtotal + shipping
    currency = current_app.config.get("CURRENCY", "usd")

    intent = get_payment_gateway().create_intent(
        amount,
        currency,
        {"user_id": str(user.id), "cart_id": str(cart.id)},
    )
    current_app.logger.info("Payment intent %s opened for user %s: %s cents", intent.get("id"), user.id, amount)

    return {
        "client_secret": intent.get("client_secret"),
        "payment_intent_id": intent.get("id"),
        "amount_cents": amount,
        "subtotal_cents": subtotal,
        "shipping_cents": shipping,
        "currency": currency,
        "cart_items": len(cart.items),
    }


def _existing_for(reference: str, user: User) -> Order | None:
    order = db.session.query(Order).filter(Order.payment_reference == reference).first()
    if order is not None and order.customer_id != user.id:
        raise ConflictError("Payment reference already belongs to another order")
    return order


def confirm_payment(user: User, reference: str, shipping_address: dict | None = None) -> tuple[Order, bool]:
    """
    Turn a succeeded payment into an order.

    Returns (order, created). created is False when the reference was
    already consumed (replay): no stock moves and no new order.
    """
    reference = (reference or "").strip()
    if not reference:
        raise ValidationError("payment_intent_id is required")

    existing = _existing_for(reference, user)
    if existing is not None:
        current_app.logger.info("Payment %s replayed; returning order %s", reference, existing.order_number)
        return existing, False

    intent = get_payment_gateway().retrieve_intent(reference)
    owner = (intent.get("metadata") or {}).get("user_id")
    if owner != str(user.id):
        raise ConflictError("Payment intent was opened for another customer")
    if intent.get("amount") is None:
        raise PaymentGatewayError("Payment gateway returned no amount for the intent")
    if intent.get("status") != INTENT_SUCCEEDED:
        raise ValidationError(
            "Payment not completed",
            details={"payment_status": intent.get("status")},
        )

    address = dict(shipping_address or {})
    if not address.get("full_name"):
        address["full_name"] = user.name
    if not address.get("email"):
        address["email"] = user.email

    def _op():
        begin_immediate()
        existing = _existing_for(reference, user)
        if existing is not None:
            return existing, False

        cart = _nonempty_cart(user.id)
        shipping = _shipping_cents()
        expected = cart.subtotal_cents + shipping
        if int(intent["amount"]) != expected:
            raise ValidationError(
                "Payment amount does not match cart total",
                details={"paid_cents": intent["amount"], "expected_cents": expected},
            )

        lines = [(item.product_id, item.quantity) for item in cart.items]
        prices = {item.product_id: item.price_cents for item in cart.items}
        checked = load_and_check_lines(lines)

        order = build_order(
            customer_code=normalize_customer_code(user.customer_code),
            customer_id=user.id,
            checked_lines=checked,
            prices=prices,
            shipping_cents=shipping,
            payment_method="Credit Card",
            payment_status=PAYMENT_PAID,
            payment_reference=reference,
            address=address,
            actor_id=user.id,
        )
        cart.items.clear()
        db.session.commit()
        return order, True

    try:
        order, created = run_with_retry(_op)
    except StorefrontError:
        db.session.rollback()
        raise
    except IntegrityError:
        # A concurrent confirmation of the same reference won the insert
        db.session.rollback()
        existing = _existing_for(reference, user)
        if existing is None:
            raise
        return existing, False

    if created:
        current_app.logger.info(
            "Payment %s confirmed: order %s, %s cents", reference, order.order_number, order.total_cents
        )
    return order, created


def payment_history(user_id: int, *, page=None, limit=None) -> dict:
    return list_user_orders(user_id, page=page, limit=limit)
