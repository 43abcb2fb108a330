# backend/storefront/routes/products.py
"""
Product catalog routes.

Reads are public (active products only); writes and the low-stock view
are admin-only.
"""
from flask import Blueprint, request, current_app
from ..models import Product
from ..errors import StorefrontError, ValidationError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    parse_bool,
)
from ..decorators import require_auth, require_role

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "category_id", "price_cents", "original_price_cents",
        "stock", "threshold", "unit", "weight", "brand", "rating_average", "rating_count",
        "is_active", "is_featured",
    },
    required_on_create={"sku", "name", "price_cents"},
)

# Accepted alongside the column fields; resolved by the service
EXTRA_FIELDS = ("tags", "category")

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _split_payload(payload: dict) -> tuple[dict, dict]:
    payload = dict(payload)
    extras = {k: payload.pop(k) for k in EXTRA_FIELDS if k in payload}
    return payload, extras


def _price_arg(name: str):
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer number of cents")
    if value < 0:
        raise ValidationError(f"{name} must be >= 0")
    return value


@products_bp.get("")
def list_products():
    """
    Query params:
    - search, category (id, slug or name)
    - min_price, max_price (cents), min_rating
    - in_stock, featured (true/false)
    - sort: price_asc | price_desc | rating | newest | name
    - page, limit
    """
    from ..services.catalog_service import find_products

    try:
        min_rating = request.args.get("min_rating", type=float)
        return find_products(
            search=request.args.get("search"),
            category=request.args.get("category"),
            min_price=_price_arg("min_price"),
            max_price=_price_arg("max_price"),
            min_rating=min_rating,
            in_stock=parse_bool(request.args.get("in_stock")),
            featured=parse_bool(request.args.get("featured")),
            sort=request.args.get("sort"),
            page=request.args.get("page", type=int),
            limit=request.args.get("limit", type=int),
        )
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@products_bp.get("/featured")
def featured_products_route():
    from ..services.catalog_service import featured_products

    items = featured_products(limit=request.args.get("limit", 8, type=int))
    return {"items": items, "count": len(items)}


@products_bp.get("/low-stock")
@require_auth
@require_role("admin")
def low_stock_route():
    from ..services.catalog_service import low_stock_products

    items = low_stock_products()
    return {"items": items, "count": len(items)}


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    from ..services.catalog_service import get_product

    try:
        return get_product(product_id).to_dict()
    except StorefrontError as e:
        return e.to_dict(), e.status_code


@products_bp.post("")
@require_auth
@require_role("admin")
def create_product_route():
    payload, extras = _split_payload(request.get_json(silent=True) or {})

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.catalog_service import create_product

    try:
        created = create_product(patch=patch, tags=extras.get("tags"), category=extras.get("category"))
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    return created, 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role("admin")
def update_product_route(product_id: int):
    payload, extras = _split_payload(request.get_json(silent=True) or {})

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.catalog_service import update_product

    try:
        return update_product(
            product_id=product_id,
            patch=patch,
            tags=extras.get("tags"),
            tags_given="tags" in extras,
            category=extras.get("category"),
        )
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return {"error": "Internal server error"}, 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role("admin")
def delete_product_route(product_id: int):
    from ..services.catalog_service import delete_product

    try:
        delete_product(product_id=product_id)
    except StorefrontError as e:
        return e.to_dict(), e.status_code

    return {"ok": True}, 200
