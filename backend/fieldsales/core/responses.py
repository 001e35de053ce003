"""Standardized API response helpers.

Paginated list endpoints return the collection under a named key plus a
pagination block:
    {"<key>": [...], "pagination": {"page", "limit", "total", "totalPages"}}
"""

import math


def clamp_page(page: int, limit: int, max_limit: int = 50) -> tuple[int, int]:
    """Normalise page/limit query values (page >= 1, 1 <= limit <= max_limit)."""
    return max(1, page), min(max_limit, max(1, limit))


def paginated_response(key: str, items: list, total: int, page: int, limit: int) -> dict:
    """Wrap a page of serialized items in the standard envelope."""
    return {
        key: items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if limit else 0,
        },
    }
