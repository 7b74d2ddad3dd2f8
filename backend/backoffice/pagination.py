from __future__ import annotations

from flask import current_app


def paginate(query, page: int | None = 1, per_page: int | None = None) -> dict:
    """
    Offset pagination over a SQLAlchemy query.

    Returns 'items', 'count' and the same 'pagination' block every list
    endpoint exposes. The query must already carry its ORDER BY. Page size
    defaults to PAGE_SIZE_DEFAULT and is capped at PAGE_SIZE_MAX.
    """
    per_page = min(per_page or current_app.config["PAGE_SIZE_DEFAULT"], current_app.config["PAGE_SIZE_MAX"])
    per_page = max(per_page, 1)
    page = max(page or 1, 1)

    total = query.order_by(None).count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [row.to_dict() for row in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
