from __future__ import annotations

from typing import Any, Dict, Iterable, List, Sequence, TypeVar

from .models import TodoEntity

T = TypeVar("T")

# Fields the list endpoint can sort by besides the ranking score.
SORTABLE_FIELDS = {"created_at", "updated_at", "priority"}


# PUBLIC_INTERFACE
def paginate(items: Sequence[T], limit: int, offset: int) -> List[T]:
    """Return the slice of `items` for the given limit/offset (negative values count as 0)."""
    start = max(offset, 0)
    end = start + max(limit, 0)
    return list(items[start:end])


# PUBLIC_INTERFACE
def sort_todos(items: Iterable[TodoEntity], field: str, reverse: bool) -> List[TodoEntity]:
    """
    Sort todos by a plain field. Unknown fields sort by created_at. Ties fall
    back to id so repeated calls return the same order.
    """
    if field not in SORTABLE_FIELDS:
        field = "created_at"
    return sorted(items, key=lambda t: (t[field], t["id"]), reverse=reverse)  # type: ignore[literal-required]


# PUBLIC_INTERFACE
def page_envelope(ordered: Sequence[T], limit: int, offset: int) -> Dict[str, Any]:
    """
    Cut one page out of an already ordered result.

    `total` counts the whole ordered result, so clients can page through a
    ranked list without the order shifting between pages.
    """
    return {
        "items": paginate(ordered, limit, offset),
        "total": len(ordered),
        "limit": max(limit, 0),
        "offset": max(offset, 0),
    }
