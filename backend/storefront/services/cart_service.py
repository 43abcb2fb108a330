# Overview: Service-layer operations for cart; encapsulates business logic and database work.

"""
Per-user cart.

Every add/update runs the stock guard on the resulting line quantity, so
a cart never holds more of a product than was on hand when the line was
written. Stock is only consumed at checkout (payment confirmation).
"""

from __future__ import annotations

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Cart, CartItem, Product
from .stock_service import ensure_available


def get_or_create_cart(user_id: int) -> Cart:
    cart = db.session.query(Cart).filter(Cart.user_id == user_id).first()
    if cart is None:
        cart = Cart(user_id=user_id)
        db.session.add(cart)
        db.session.flush()
    return cart


def _active_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or not product.is_active:
        raise NotFoundError("Product not found")
    return product


def _find_item(cart: Cart, product_id: int) -> CartItem | None:
    for item in cart.items:
        if item.product_id == product_id:
            return item
    return None


def get_cart(user_id: int) -> dict:
    cart = get_or_create_cart(user_id)
    db.session.commit()
    return cart.to_dict()


def add_item(user_id: int, product_id: int, quantity: int) -> dict:
    """
    Add `quantity` of a product; an existing line is merged and the guard
    runs on the merged quantity.
    """
    if quantity < 1:
        raise ValidationError("quantity must be >= 1")

    product = _active_product(product_id)
    cart = get_or_create_cart(user_id)
    item = _find_item(cart, product_id)

    new_quantity = quantity + (item.quantity if item else 0)
    try:
        ensure_available(product, new_quantity)
    except InsufficientStockError:
        db.session.rollback()
        raise

    if item is None:
        cart.items.append(CartItem(product_id=product.id, quantity=new_quantity, price_cents=product.price_cents))
    else:
        item.quantity = new_quantity
        item.price_cents = product.price_cents

    db.session.commit()
    return cart.to_dict()


def update_item(user_id: int, product_id: int, quantity: int) -> dict:
    """Set a line's quantity (re-priced to the current product price)."""
    if quantity < 1:
        raise ValidationError("quantity must be >= 1")

    cart = get_or_create_cart(user_id)
    item = _find_item(cart, product_id)
    if item is None:
        raise NotFoundError("Item not found in cart")

    product = _active_product(product_id)
    ensure_available(product, quantity)

    item.quantity = quantity
    item.price_cents = product.price_cents

    db.session.commit()
    return cart.to_dict()


def remove_item(user_id: int, product_id: int) -> dict:
    cart = get_or_create_cart(user_id)
    item = _find_item(cart, product_id)
    if item is None:
        raise NotFoundError("Item not found in cart")

    cart.items.remove(item)
    db.session.commit()
    return cart.to_dict()


def clear_cart(user_id: int) -> None:
    cart = db.session.query(Cart).filter(Cart.user_id == user_id).first()
    if cart is None:
        return
    cart.items.clear()
    db.session.commit()
