"""Standardized API response helpers.

List endpoints return ``{"items": [...], "total": <int>}``; paginated ones
add ``skip``, ``limit`` and ``has_more``. Single-item endpoints return the
object directly.
"""

from typing import Optional


def list_response(items: list, total: Optional[int] = None) -> dict:
    return {
        "items": items,
        "total": total if total is not None else len(items),
    }


def paginated_response(items: list, total: int, skip: int = 0, limit: int = 50) -> dict:
    return {
        "items": items,
        "total": total,
        "skip": skip,
        "limit": limit,
        "has_more": (skip + len(items)) < total,
    }
