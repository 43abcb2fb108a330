# backend/storefront/routes/categories.py
from flask import Blueprint, request

from ..models import Category
from ..errors import StorefrontError, ValidationError
from ..validation import ModelValidationPolicy, validate_payload, parse_bool
from ..decorators import require_auth, require_role

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "slug", "description", "parent_id", "sort_order", "is_active"},
    required_on_create={"name"},
)

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
def list_categories_route():
    from ..services.catalog_service import list_categories

    try:
        items = list_categories(
            search=request.args.get("search"),
            active=parse_bool(request.args.get("active")),
            parent_id=request.args.get("parent_id", type=int),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    return {"items": items, "count": len(items)}


@categories_bp.get("/<int:category_id>")
def get_category_route(category_id: int):
    from ..services.catalog_service import get_category

    try:
        return get_category(category_id).to_dict()
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@categories_bp.post("")
@require_auth
@require_role("admin")
def create_category_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.catalog_service import create_category

    try:
        return create_category(patch=patch), 201
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@categories_bp.put("/<int:category_id>")
@require_auth
@require_role("admin")
def update_category_route(category_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.catalog_service import update_category

    try:
        return update_category(category_id=category_id, patch=patch)
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@categories_bp.delete("/<int:category_id>")
@require_auth
@require_role("admin")
def delete_category_route(category_id: int):
    from ..services.catalog_service import delete_category

    try:
        delete_category(category_id=category_id)
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    return {"ok": True}, 200
