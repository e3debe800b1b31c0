from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Sequence, Union


# PUBLIC_INTERFACE
def total_pages(total: int, limit: int) -> int:
    """ceil(total / limit); 0 when there is nothing to page or the limit is not positive."""
    if limit <= 0:
        return 0
    return math.ceil(max(total, 0) / limit)


# PUBLIC_INTERFACE
def pagination_meta(total: int, page: int, limit: int) -> Dict[str, int]:
    """Pagination block shared by the list endpoint and the client cache."""
    return {
        "total": int(total),
        "page": int(max(page, 1)),
        "limit": int(max(limit, 0)),
        "totalPages": total_pages(total, limit),
    }


# PUBLIC_INTERFACE
def pagination_envelope(
    items: Union[Sequence[Any], Iterable[Any]],
    total: int,
    page: int,
    limit: int,
) -> Dict[str, Any]:
    """
    Build a standard pagination envelope for list endpoints.

    Args:
        items: The list/iterable of items for the current page.
        total: Total number of items that match the query (ignoring pagination).
        page: The 1-based page number that was requested.
        limit: The page size used for pagination.

    Returns:
        Dict with keys: items, pagination (total, page, limit, totalPages).
    """
    # Ensure items is materialized as a list (in case an iterator is passed)
    materialized: List[Any] = list(items) if not isinstance(items, list) else items
    return {
        "items": materialized,
        "pagination": pagination_meta(total, page, limit),
    }
