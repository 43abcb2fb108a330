# backend/storefront/routes/inventory.py
"""
Inventory record routes (admin).

Balance changes are never written directly: creation, stock edits,
movements and stock checks all append ledger movements.
"""
from flask import Blueprint, request, g, current_app

from ..models import InventoryRecord
from ..errors import StorefrontError, ValidationError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_inventory,
    validate_movement,
    coerce_int,
    parse_bool,
)
from ..services import inventory_service
from ..decorators import require_auth, require_role

INVENTORY_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "stock", "threshold", "unit", "cost_price_cents", "selling_price_cents",
        "supplier_name", "warehouse", "status", "reorder_point", "max_stock",
    },
    required_on_create={"name"},
)

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _split(payload: dict) -> tuple[dict, int | None, str | None]:
    payload = dict(payload)
    product_id = payload.pop("product_id", None)
    reason = payload.pop("reason", None)
    if product_id is not None:
        product_id = coerce_int(product_id, "product_id")
    return payload, product_id, reason


@inventory_bp.get("")
@require_auth
@require_role("admin")
def list_inventory_route():
    """Query params: search, status, low_stock, out_of_stock, page, limit"""
    try:
        return inventory_service.list_records(
            search=request.args.get("search"),
            status=request.args.get("status"),
            low_stock=bool(parse_bool(request.args.get("low_stock"))),
            out_of_stock=bool(parse_bool(request.args.get("out_of_stock"))),
            page=request.args.get("page", type=int),
            limit=request.args.get("limit", type=int),
        )
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@inventory_bp.get("/low-stock")
@require_auth
@require_role("admin")
def low_stock_route():
    items = inventory_service.low_stock_records()
    return {"items": items, "count": len(items)}


@inventory_bp.get("/out-of-stock")
@require_auth
@require_role("admin")
def out_of_stock_route():
    items = inventory_service.out_of_stock_records()
    return {"items": items, "count": len(items)}


@inventory_bp.get("/<int:record_id>")
@require_auth
@require_role("admin")
def get_inventory_route(record_id: int):
    try:
        return inventory_service.get_record(record_id).to_dict(include_movements=True)
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@inventory_bp.post("")
@require_auth
@require_role("admin")
def create_inventory_route():
    try:
        payload, product_id, _ = _split(request.get_json(silent=True) or {})
        patch = validate_payload(model=InventoryRecord, payload=payload, policy=INVENTORY_POLICY, partial=False)
        enforce_rules_inventory(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        record = inventory_service.create_record(patch=patch, product_id=product_id, actor_id=g.current_user.id)
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create inventory record")
        return {"error": "Internal server error"}, 500

    return record.to_dict(include_movements=True), 201


@inventory_bp.put("/<int:record_id>")
@require_auth
@require_role("admin")
def update_inventory_route(record_id: int):
    """A changed `stock` is ledgered as IN/OUT with the optional `reason`."""
    try:
        payload, product_id, reason = _split(request.get_json(silent=True) or {})
        patch = validate_payload(model=InventoryRecord, payload=payload, policy=INVENTORY_POLICY, partial=True)
        enforce_rules_inventory(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        record = inventory_service.update_record(
            record_id,
            patch=patch,
            product_id=product_id,
            reason=reason,
            actor_id=g.current_user.id,
        )
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update inventory record")
        return {"error": "Internal server error"}, 500

    return record.to_dict(include_movements=True)


@inventory_bp.delete("/<int:record_id>")
@require_auth
@require_role("admin")
def delete_inventory_route(record_id: int):
    try:
        record = inventory_service.delete_record(record_id)
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    return {"ok": True, "record": record.to_dict()}, 200


@inventory_bp.post("/<int:record_id>/movements")
@require_auth
@require_role("admin")
def add_movement_route(record_id: int):
    """Body: {"type": IN|OUT|ADJUSTMENT|TRANSFER|RETURN, "quantity", "reason", "reference"?, "notes"?}"""
    try:
        movement = validate_movement(request.get_json(silent=True) or {})
        created = inventory_service.add_movement(record_id, movement, actor_id=g.current_user.id)
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return {"error": "Internal server error"}, 500

    return {
        "movement": created.to_dict(),
        "record": inventory_service.get_record(record_id).to_dict(),
    }, 201


@inventory_bp.post("/<int:record_id>/stock-check")
@require_auth
@require_role("admin")
def stock_check_route(record_id: int):
    """Body: {"physical_count": int, "notes"?: str}"""
    data = request.get_json(silent=True) or {}

    try:
        if data.get("physical_count") is None:
            raise ValidationError("physical_count is required")
        physical = coerce_int(data["physical_count"], "physical_count")
        return inventory_service.stock_check(
            record_id,
            physical_count=physical,
            notes=(data.get("notes") or None),
            actor_id=g.current_user.id,
        )
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to run stock check")
        return {"error": "Internal server error"}, 500
