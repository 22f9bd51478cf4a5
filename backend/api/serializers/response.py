"""
Response envelope helpers.

Every boundary response is exactly one of:
    {"data": ...}                                  (single resource)
    {"data": [...], "pagination": {...}}           (paginated list)
    {"error": "...", "details": {...}?}            (failure)
204 responses carry no body at all.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


SUCCESS_KEYS = ({"data"}, {"data", "pagination"})
ERROR_KEYS = ({"error"}, {"error", "details"})
PAGINATION_KEYS = {"page", "limit", "total", "totalPages"}


@dataclass(frozen=True)
class Paginated:
    """A page of mapped items, returned by list handlers."""
    items: List[Any]
    page: int
    limit: int
    total: int


def success_envelope(data: Any) -> Dict[str, Any]:
    """Build a single-resource success envelope."""
    return {"data": data}


def paginated_envelope(data: List[Any], page: int, limit: int, total: int) -> Dict[str, Any]:
    """
    Build a paginated response envelope.

    Args:
        data: Page of data items
        page: Current page number (1-indexed)
        limit: Items per page
        total: Total items across all pages

    Returns:
        {"data": [...], "pagination": {"page", "limit", "total", "totalPages"}}
    """
    total_pages = (total + limit - 1) // limit if limit > 0 else 0
    return {
        "data": data,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
        },
    }


def error_envelope(message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build an error envelope; `details` is omitted when empty."""
    body: Dict[str, Any] = {"error": message}
    if details:
        body["details"] = details
    return body


def is_envelope(body: Any) -> bool:
    """True if `body` is exactly one of the allowed envelope shapes."""
    if not isinstance(body, dict):
        return False
    keys = set(body)
    if keys in SUCCESS_KEYS:
        if "pagination" in body:
            return isinstance(body["data"], list) and set(body["pagination"] or {}) == PAGINATION_KEYS
        return True
    if keys in ERROR_KEYS:
        return isinstance(body["error"], str) and isinstance(body.get("details", {}), dict)
    return False
