# backend/storefront/routes/sales.py
from flask import Blueprint, request, g, current_app

from ..models import Sale
from ..errors import StorefrontError, ValidationError
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_sale
from ..services import sale_service
from ..decorators import require_auth, require_role

SALE_POLICY = ModelValidationPolicy(
    writable_fields={
        "customer_name", "customer_email", "customer_code", "sales_channel",
        "payment_method", "region", "notes", "discount_cents", "tax_cents", "sold_at",
        "status",
    },
)

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_auth
@require_role("admin")
def list_sales_route():
    """Query params: search, status, sales_channel, payment_method, startDate, endDate, page, limit"""
    try:
        return sale_service.list_sales(
            search=request.args.get("search"),
            status=request.args.get("status"),
            sales_channel=request.args.get("sales_channel"),
            payment_method=request.args.get("payment_method"),
            start_date=request.args.get("startDate"),
            end_date=request.args.get("endDate"),
            page=request.args.get("page", type=int),
            limit=request.args.get("limit", type=int),
        )
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_role("admin")
def get_sale_route(sale_id: int):
    try:
        return sale_service.get_sale(sale_id).to_dict()
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@sales_bp.post("")
@require_auth
@require_role("admin")
def create_sale_route():
    """
    Body: {"items": [{"product_id"?, "product_name"?, "quantity",
                      "unit_price_cents"?, "unit_cost_cents"?}], ...sale fields}
    """
    data = dict(request.get_json(silent=True) or {})
    items = data.pop("items", None)
    data.pop("status", None)

    try:
        patch = validate_payload(model=Sale, payload=data, policy=SALE_POLICY, partial=True)
        enforce_rules_sale(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        sale = sale_service.create_sale(patch=patch, items=items, actor_id=g.current_user.id)
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return {"error": "Internal server error"}, 500

    return sale.to_dict(), 201


@sales_bp.post("/from-order/<int:order_id>")
@require_auth
@require_role("admin")
def create_sale_from_order_route(order_id: int):
    try:
        sale = sale_service.create_sale_from_order(order_id, actor_id=g.current_user.id)
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale from order")
        return {"error": "Internal server error"}, 500

    return sale.to_dict(), 201


@sales_bp.put("/<int:sale_id>")
@require_auth
@require_role("admin")
def update_sale_route(sale_id: int):
    try:
        patch = validate_payload(
            model=Sale,
            payload=request.get_json(silent=True) or {},
            policy=SALE_POLICY,
            partial=True,
        )
        enforce_rules_sale(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        return sale_service.update_sale(sale_id, patch=patch, actor_id=g.current_user.id).to_dict()
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update sale")
        return {"error": "Internal server error"}, 500


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_role("admin")
def delete_sale_route(sale_id: int):
    try:
        sale_service.delete_sale(sale_id, actor_id=g.current_user.id)
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return {"error": "Internal server error"}, 500

    return {"ok": True}, 200
