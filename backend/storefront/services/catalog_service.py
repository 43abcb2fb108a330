# backend/storefront/services/catalog_service.py
"""
Catalog: products and categories.

find_products() is the read side used by the storefront; the remaining
functions are admin maintenance. Product stock is never written here
after creation except through inventory/stock services.
"""
from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import func, or_

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Category, Product
from .pagination import MAX_LIMIT, clamp, page_payload, paginate

PRODUCT_MUTABLE_FIELDS = {
    "sku", "name", "description", "category_id", "price_cents", "original_price_cents",
    "stock", "threshold", "unit", "weight", "brand", "rating_average", "rating_count",
    "is_active", "is_featured",
}

SORTS = {
    "price_asc": (Product.price_cents.asc(), Product.id.asc()),
    "price_desc": (Product.price_cents.desc(), Product.id.asc()),
    "rating": (Product.rating_average.desc(), Product.rating_count.desc(), Product.id.asc()),
    "newest": (Product.created_at.desc(), Product.id.desc()),
    "name": (Product.name.asc(), Product.id.asc()),
}
DEFAULT_SORT = "newest"

DEFAULT_LIMIT = 12


def normalize_tags(tags) -> str | None:
    """Accept a list or a comma-separated string; store lower-cased, comma-joined."""
    if tags is None:
        return None
    if isinstance(tags, str):
        tags = tags.split(",")
    if not isinstance(tags, (list, tuple)):
        raise ValidationError("tags must be a list of strings")
    cleaned = []
    for t in tags:
        t = str(t).strip().lower()
        if t and t not in cleaned:
            cleaned.append(t)
    return ",".join(cleaned) or None


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    return slug or "category"


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

def find_products(
    *,
    search: str | None = None,
    category: str | int | None = None,
    min_price: int | None = None,
    max_price: int | None = None,
    min_rating: float | None = None,
    in_stock: bool | None = None,
    featured: bool | None = None,
    include_inactive: bool = False,
    sort: str | None = None,
    page: int = 1,
    limit: int = DEFAULT_LIMIT,
) -> dict:
    """
    Filtered, sorted, paginated product listing.

    category accepts a category id or name/slug. Prices are cents.
    Pagination is offset-based: offset = (page - 1) * limit,
    has_next = offset + limit < total, has_prev = offset > 0.
    """
    query = db.session.query(Product)

    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))

    if search:
        term = search.strip()
        query = query.filter(or_(
            Product.name.icontains(term, autoescape=True),
            Product.description.icontains(term, autoescape=True),
            Product.tags.icontains(term, autoescape=True),
        ))

    if category not in (None, ""):
        cat = resolve_category(category)
        if cat is None:
            page, limit = clamp(page, limit, DEFAULT_LIMIT)
            return page_payload([], 0, page, limit)
        query = query.filter(Product.category_id == cat.id)

    if min_price is not None:
        query = query.filter(Product.price_cents >= min_price)
    if max_price is not None:
        query = query.filter(Product.price_cents <= max_price)
    if min_rating is not None:
        query = query.filter(Product.rating_average >= min_rating)

    if in_stock is True:
        query = query.filter(Product.stock > 0)
    elif in_stock is False:
        query = query.filter(Product.stock == 0)

    if featured is not None:
        query = query.filter(Product.is_featured.is_(featured))

    sort_key = sort if sort in SORTS else DEFAULT_SORT
    return paginate(query.order_by(*SORTS[sort_key]), page=page, limit=limit, default_limit=DEFAULT_LIMIT)


def featured_products(limit: int = 8) -> list[dict]:
    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.is_featured.is_(True))
        .order_by(Product.rating_average.desc(), Product.id.asc())
        .limit(min(max(limit, 1), MAX_LIMIT))
        .all()
    )
    return [p.to_dict() for p in products]


def low_stock_products() -> list[dict]:
    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.stock <= Product.threshold)
        .order_by(Product.stock.asc(), Product.id.asc())
        .all()
    )
    return [p.to_dict() for p in products]


def get_product(product_id: int, *, include_inactive: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or (not include_inactive and not product.is_active):
        raise NotFoundError("Product not found")
    return product


def _apply_product_patch(product: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(product, k, v)


def _resolve_category_field(patch: dict, category_name) -> None:
    if category_name in (None, ""):
        return
    cat = resolve_category(category_name)
    if cat is None:
        raise ValidationError(f"Unknown category: {category_name}")
    patch["category_id"] = cat.id


def create_product(*, patch: dict, tags=None, category=None) -> dict:
    """
    Create a product from a validated patch.

    Raises ConflictError for a duplicate SKU and ValidationError for an
    unknown category.
    """
    patch = dict(patch)
    _resolve_category_field(patch, category)
    if patch.get("category_id") is not None and db.session.get(Category, patch["category_id"]) is None:
        raise ValidationError("Unknown category_id")

    if db.session.query(Product).filter(Product.sku == patch["sku"]).first():
        raise ConflictError("Product with this SKU already exists")

    product = Product()
    _apply_product_patch(product, patch)
    product.tags = normalize_tags(tags)

    db.session.add(product)
    db.session.commit()
    current_app.logger.info("Created product %s (%s)", product.id, product.sku)
    return product.to_dict()


def update_product(*, product_id: int, patch: dict, tags=None, tags_given: bool = False, category=None) -> dict:
    """
    Update catalog fields.

    stock is refused when the product is linked to an inventory record;
    the record's ledger owns the balance then.
    """
    product = get_product(product_id, include_inactive=True)
    patch = dict(patch)
    _resolve_category_field(patch, category)

    if patch.get("category_id") is not None and db.session.get(Category, patch["category_id"]) is None:
        raise ValidationError("Unknown category_id")

    if "sku" in patch and patch["sku"] != product.sku:
        clash = db.session.query(Product).filter(Product.sku == patch["sku"], Product.id != product.id).first()
        if clash:
            raise ConflictError("Product with this SKU already exists")

    if "stock" in patch and product.inventory_record is not None and patch["stock"] != product.stock:
        raise ConflictError("Stock is managed by the inventory record for this product; record a movement instead")

    _apply_product_patch(product, patch)
    if tags_given:
        product.tags = normalize_tags(tags)

    db.session.commit()
    return product.to_dict()


def delete_product(*, product_id: int) -> None:
    """
    Remove a product from the catalog.

    Inventory records are unlinked; order/sale snapshots keep their
    copied names and prices.
    """
    product = get_product(product_id, include_inactive=True)
    from ..models import CartItem, OrderItem, SaleItem

    record = product.inventory_record
    if record is not None:
        record.product_id = None
    db.session.query(CartItem).filter(CartItem.product_id == product.id).delete(synchronize_session=False)
    for model in (OrderItem, SaleItem):
        db.session.query(model).filter(model.product_id == product.id).update(
            {model.product_id: None}, synchronize_session=False
        )

    db.session.delete(product)
    db.session.commit()
    current_app.logger.info("Deleted product %s (%s)", product_id, product.sku)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def resolve_category(value) -> Category | None:
    """Find a category by id, slug or case-insensitive name."""
    if isinstance(value, int) or (isinstance(value, str) and value.strip().isdigit()):
        return db.session.get(Category, int(value))
    value = str(value).strip()
    return db.session.query(Category).filter(or_(
        Category.slug == value.lower(),
        func.lower(Category.name) == value.lower(),
    )).first()


def list_categories(*, search: str | None = None, active: bool | None = None, parent_id: int | None = None) -> list[dict]:
    query = db.session.query(Category)
    if search:
        query = query.filter(Category.name.icontains(search.strip(), autoescape=True))
    if active is not None:
        query = query.filter(Category.is_active.is_(active))
    if parent_id is not None:
        query = query.filter(Category.parent_id == parent_id)
    return [c.to_dict() for c in query.order_by(Category.sort_order.asc(), Category.name.asc()).all()]


def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category not found")
    return category


def _check_category_unique(name: str, slug: str, parent_id: int | None, exclude_id: int | None = None) -> None:
    same_name = db.session.query(Category).filter(
        func.lower(Category.name) == name.lower(),
        Category.parent_id.is_(None) if parent_id is None else Category.parent_id == parent_id,
    )
    same_slug = db.session.query(Category).filter(Category.slug == slug)
    if exclude_id is not None:
        same_name = same_name.filter(Category.id != exclude_id)
        same_slug = same_slug.filter(Category.id != exclude_id)
    if same_name.first():
        raise ConflictError("Category with this name already exists")
    if same_slug.first():
        raise ConflictError("Category with this slug already exists")


def create_category(*, patch: dict) -> dict:
    name = patch["name"]
    slug = slugify(patch.get("slug") or name)
    parent_id = patch.get("parent_id")
    if parent_id is not None:
        get_category(parent_id)

    _check_category_unique(name, slug, parent_id)

    category = Category(
        name=name,
        slug=slug,
        description=patch.get("description"),
        parent_id=parent_id,
        sort_order=patch.get("sort_order") or 0,
        is_active=patch.get("is_active", True),
    )
    db.session.add(category)
    db.session.commit()
    return category.to_dict()


def update_category(*, category_id: int, patch: dict) -> dict:
    category = get_category(category_id)

    name = patch.get("name", category.name)
    slug = slugify(patch["slug"]) if patch.get("slug") else (slugify(name) if "name" in patch else category.slug)
    parent_id = patch.get("parent_id", category.parent_id)
    if parent_id is not None:
        if parent_id == category.id:
            raise ValidationError("A category cannot be its own parent")
        get_category(parent_id)

    _check_category_unique(name, slug, parent_id, exclude_id=category.id)

    for k in ("description", "sort_order", "is_active"):
        if k in patch:
            setattr(category, k, patch[k])
    category.name = name
    category.slug = slug
    category.parent_id = parent_id

    db.session.commit()
    return category.to_dict()


def delete_category(*, category_id: int) -> None:
    category = get_category(category_id)
    in_use = db.session.query(Product).filter(Product.category_id == category.id).count()
    if in_use:
        raise ConflictError(f"Category has {in_use} product(s); reassign them first")
    if category.children:
        raise ConflictError("Category has subcategories; remove them first")
    db.session.delete(category)
    db.session.commit()
