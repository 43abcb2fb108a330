# Overview: Offset pagination shared by list endpoints.

from __future__ import annotations

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def clamp(page: int | None, limit: int | None, default_limit: int = DEFAULT_LIMIT) -> tuple[int, int]:
    page = max(page or 1, 1)
    limit = min(max(limit or default_limit, 1), MAX_LIMIT)
    return page, limit


def page_payload(items: list[dict], total: int, page: int, limit: int) -> dict:
    """has_next = offset + limit < total, has_prev = offset > 0."""
    offset = (page - 1) * limit
    total_pages = (total + limit - 1) // limit if total > 0 else 1
    return {
        "items": items,
        "count": len(items),
        "total": total,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": offset + limit < total,
            "has_prev": offset > 0,
        },
    }


def paginate(query, *, page: int | None, limit: int | None, default_limit: int = DEFAULT_LIMIT, serialize=None) -> dict:
    """Run an already-ordered query for one page."""
    page, limit = clamp(page, limit, default_limit)
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    serialize = serialize or (lambda row: row.to_dict())
    return page_payload([serialize(r) for r in rows], total, page, limit)
