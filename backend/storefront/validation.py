from __future__ import annotations
from datetime import datetime
from .time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Float, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .models.catalog import VALID_UNITS
from .models.inventory import INVENTORY_STATUSES, MOVEMENT_ADJUSTMENT, MOVEMENT_TYPES
from .models.orders import PAYMENT_METHODS, PAYMENT_STATUSES
from .models.sales import SALE_PAYMENT_METHODS, SALE_STATUSES, SALES_CHANNELS


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

MAX_REASON_LENGTH = 200


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Per-endpoint allowlist:
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects floats, bools, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_positive_int(value: Any, field: str) -> int:
    n = coerce_int(value, field)
    if n < 1:
        raise ValidationError(f"{field} must be >= 1")
    return n


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Float):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{col.key} must be a number")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - the policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_price(patch: dict, field: str) -> None:
    price = patch.get(field)
    if price is None:
        return
    if price < 0:
        raise ValidationError(f"{field} must be >= 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")


def _check_non_negative(patch: dict, field: str) -> None:
    value = patch.get(field)
    if value is not None and value < 0:
        raise ValidationError(f"{field} must be >= 0")


def enforce_rules_product(patch: dict) -> None:
    """Product rules not captured by column metadata."""
    _check_price(patch, "price_cents")
    _check_price(patch, "original_price_cents")
    _check_non_negative(patch, "stock")
    _check_non_negative(patch, "threshold")
    _check_non_negative(patch, "weight")

    if "unit" in patch and patch["unit"] not in VALID_UNITS:
        raise ValidationError(f"unit must be one of: {', '.join(VALID_UNITS)}")

    rating = patch.get("rating_average")
    if rating is not None and not (0 <= rating <= 5):
        raise ValidationError("rating_average must be between 0 and 5")

    if patch.get("sku") is not None:
        patch["sku"] = patch["sku"].upper()


def enforce_rules_inventory(patch: dict) -> None:
    _check_price(patch, "cost_price_cents")
    _check_price(patch, "selling_price_cents")
    _check_non_negative(patch, "stock")
    _check_non_negative(patch, "threshold")
    _check_non_negative(patch, "reorder_point")
    _check_non_negative(patch, "max_stock")

    if "unit" in patch and patch["unit"] not in VALID_UNITS:
        raise ValidationError(f"unit must be one of: {', '.join(VALID_UNITS)}")
    if "status" in patch and patch["status"] not in INVENTORY_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(INVENTORY_STATUSES)}")

    if patch.get("sku") is not None:
        patch["sku"] = patch["sku"].upper()


def validate_movement(payload: dict) -> dict:
    """Validate a stock movement request body: {type, quantity, reason, reference?, notes?}."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    movement_type = str(payload.get("type") or "").strip().upper()
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(MOVEMENT_TYPES)}")

    if payload.get("quantity") is None:
        raise ValidationError("quantity is required")
    quantity = coerce_int(payload["quantity"], "quantity")
    if quantity < 0:
        raise ValidationError("quantity must be >= 0")
    # Only an ADJUSTMENT may target zero
    if quantity == 0 and movement_type != MOVEMENT_ADJUSTMENT:
        raise ValidationError(f"quantity must be >= 1 for {movement_type}")

    reason = str(payload.get("reason") or "").strip()
    if not reason:
        raise ValidationError("reason is required")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"reason exceeds max length {MAX_REASON_LENGTH}")

    return {
        "type": movement_type,
        "quantity": quantity,
        "reason": reason,
        "reference": (str(payload["reference"]).strip() or None) if payload.get("reference") else None,
        "notes": (str(payload["notes"]).strip() or None) if payload.get("notes") else None,
    }


def enforce_rules_order_update(patch: dict) -> None:
    if "payment_status" in patch and patch["payment_status"] not in PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")
    if "payment_method" in patch and patch["payment_method"] not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")


def enforce_rules_sale(patch: dict) -> None:
    _check_non_negative(patch, "discount_cents")
    _check_non_negative(patch, "tax_cents")

    if "status" in patch and patch["status"] not in SALE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(SALE_STATUSES)}")
    if "sales_channel" in patch and patch["sales_channel"] not in SALES_CHANNELS:
        raise ValidationError(f"sales_channel must be one of: {', '.join(SALES_CHANNELS)}")
    if "payment_method" in patch and patch["payment_method"] not in SALE_PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(SALE_PAYMENT_METHODS)}")


def parse_bool(value) -> bool | None:
    """Query-string flag: true/1/yes -> True, false/0/no -> False, absent -> None."""
    if value is None or value == "":
        return None
    lowered = str(value).strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValidationError(f"Invalid boolean value: {value}")
