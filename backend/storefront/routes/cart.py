# backend/storefront/routes/cart.py
from flask import Blueprint, request, g, current_app

from ..errors import StorefrontError, ValidationError
from ..services import cart_service
from ..validation import coerce_int, coerce_positive_int
from ..decorators import require_auth

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@require_auth
def get_cart_route():
    return cart_service.get_cart(g.current_user.id)


@cart_bp.post("")
@require_auth
def add_to_cart_route():
    """Body: {"product_id": int, "quantity": int (default 1)}"""
    data = request.get_json(silent=True) or {}

    try:
        if data.get("product_id") is None:
            raise ValidationError("product_id is required")
        product_id = coerce_int(data["product_id"], "product_id")
        quantity = coerce_positive_int(data.get("quantity", 1), "quantity")
        return cart_service.add_item(g.current_user.id, product_id, quantity)
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add item to cart")
        return {"error": "Internal server error"}, 500


@cart_bp.put("/<int:product_id>")
@require_auth
def update_cart_item_route(product_id: int):
    data = request.get_json(silent=True) or {}

    try:
        if data.get("quantity") is None:
            raise ValidationError("quantity is required")
        quantity = coerce_positive_int(data["quantity"], "quantity")
        return cart_service.update_item(g.current_user.id, product_id, quantity)
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return {"error": "Internal server error"}, 500


@cart_bp.delete("/<int:product_id>")
@require_auth
def remove_cart_item_route(product_id: int):
    try:
        return cart_service.remove_item(g.current_user.id, product_id)
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@cart_bp.delete("")
@require_auth
def clear_cart_route():
    cart_service.clear_cart(g.current_user.id)
    return {"ok": True, "message": "Cart cleared"}, 200
