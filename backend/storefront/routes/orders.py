# backend/storefront/routes/orders.py
"""
Order routes.

Customers place orders and read their own; admins list, edit, move
orders through the lifecycle and delete them.
"""
from flask import Blueprint, request, g, current_app

from ..models import Order
from ..errors import StorefrontError, ValidationError
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_order_update
from ..services import order_service
from ..decorators import require_auth, require_role

ORDER_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=set(order_service.ORDER_MUTABLE_FIELDS),
)

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Body, multi-item:
        {"items": [{"product_id", "quantity"}], "shipping_address": {...},
         "payment_method", "tax_cents", "shipping_cents", "discount_cents", ...}
    Body, single item:
        {"product_name", "quantity", ...}
    Admins may pass "customer_code" to order on a customer's behalf.
    """
    data = request.get_json(silent=True) or {}

    try:
        order = order_service.create_order(g.current_user, data)
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return {"error": "Internal server error"}, 500

    return order.to_dict(), 201


@orders_bp.get("")
@require_auth
@require_role("admin")
def list_orders_route():
    """Query params: search, status, startDate, endDate, page, limit"""
    try:
        return order_service.list_orders(
            search=request.args.get("search"),
            status=request.args.get("status"),
            start_date=request.args.get("startDate"),
            end_date=request.args.get("endDate"),
            page=request.args.get("page", type=int),
            limit=request.args.get("limit", type=int),
        )
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@orders_bp.get("/mine")
@require_auth
def my_orders_route():
    try:
        return order_service.list_user_orders(
            g.current_user.id,
            status=request.args.get("status"),
            page=request.args.get("page", type=int),
            limit=request.args.get("limit", type=int),
        )
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        return order_service.get_order(order_id, g.current_user).to_dict()
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@orders_bp.put("/<int:order_id>")
@require_auth
@require_role("admin")
def update_order_route(order_id: int):
    """Non-stock fields only; status changes go through /status."""
    data = dict(request.get_json(silent=True) or {})

    try:
        address = data.pop("shipping_address", None)
        data.update(order_service.shipping_columns(address))
        patch = validate_payload(model=Order, payload=data, policy=ORDER_UPDATE_POLICY, partial=True)
        enforce_rules_order_update(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        return order_service.update_order(order_id, patch).to_dict()
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@orders_bp.put("/<int:order_id>/status")
@require_auth
@require_role("admin")
def update_order_status_route(order_id: int):
    """Body: {"status": str, "tracking_number"?, "carrier"?, "tracking_url"?}"""
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if not status:
        return {"error": "status is required"}, 400

    try:
        order = order_service.update_status(
            order_id,
            status,
            actor_id=g.current_user.id,
            tracking=data,
        )
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return {"error": "Internal server error"}, 500

    return order.to_dict()


@orders_bp.delete("/<int:order_id>")
@require_auth
@require_role("admin")
def delete_order_route(order_id: int):
    try:
        order_service.delete_order(order_id, actor_id=g.current_user.id)
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return {"error": "Internal server error"}, 500

    return {"ok": True}, 200
