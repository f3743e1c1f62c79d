from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger
from pydantic import BaseModel, Field

from .. import sort_settings
from ..auth import get_current_user
from ..dependencies import get_clock, get_ranking_algorithm, get_repo
from ..models import TodoEntity, TodoStatus
from ..ranking import ScoringAlgorithm, rank
from ..repositories import Repository, TodoFilter
from ..schemas import RankedTodoOut, TodoBulkCreate, TodoCreate, TodoOut, TodoUpdate
from ..utils import SORTABLE_FIELDS, page_envelope, sort_todos

router = APIRouter(
    prefix="/api/v1/todos",
    tags=["todos"],
)

_NOT_FOUND = "Todo not found"


class PaginationEnvelope(BaseModel):
    """
    Envelope for paginated list responses.
    """
    items: List[RankedTodoOut] = Field(..., description="List of Todo items")
    total: int = Field(..., description="Total number of items matching the query")
    limit: int = Field(..., description="Limit applied to the query")
    offset: int = Field(..., description="Offset applied to the query")


def _found(item: Optional[TodoEntity]) -> TodoOut:
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    return TodoOut(**item)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TodoOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a new Todo item and return the created resource. Unknown tag names are created.",
    responses={
        201: {"description": "Todo created successfully"},
        422: {"description": "Validation error"},
    },
)
def create_todo(
    payload: TodoCreate,
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> TodoOut:
    """
    Create a new Todo.
    """
    created = repo.create_todo(user_id, payload)
    logger.info(f"[todos] created id={created['id']} user={user_id} priority={created['priority']}")
    return TodoOut(**created)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.post(
    "/bulk",
    response_model=List[TodoOut],
    status_code=status.HTTP_201_CREATED,
    summary="Create Todos in bulk",
    description="Create several todos at once, e.g. the todos accepted from a voice recording.",
)
def create_todos_bulk(
    payload: TodoBulkCreate,
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> List[TodoOut]:
    created = repo.create_todos(user_id, payload.todos)
    logger.info(f"[todos] bulk created {len(created)} todo(s) user={user_id}")
    return [TodoOut(**c) for c in created]  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=PaginationEnvelope,
    summary="List Todos",
    description=(
        "List todos with optional filters and pagination.\n\n"
        "Query parameters:\n"
        "- limit: max number of items to return (0..1000)\n"
        "- offset: number of items to skip (>=0)\n"
        "- archived: list archived todos instead of active ones\n"
        "- status: filter by status\n"
        "- tag_id: only todos carrying this tag\n"
        "- q: search query for title/description (substring match)\n"
        "- sort: score (default), created_at, -created_at, updated_at, -updated_at, priority, -priority\n"
        "- order: asc or desc (if provided, it overrides the direction in sort)\n\n"
        "With sort=score the list is ordered by the ranking engine using the caller's sort settings; "
        "each item then carries its score."
    ),
    responses={
        200: {"description": "List retrieved successfully"},
        400: {"description": "Invalid query parameters"},
    },
)
def list_todos(
    limit: int = Query(50, ge=0, le=1000, description="Maximum number of items to return"),
    offset: int = Query(0, ge=0, description="Number of items to skip"),
    archived: bool = Query(False, description="List archived todos"),
    status_filter: Optional[TodoStatus] = Query(None, alias="status", description="Filter by status"),
    tag_id: Optional[int] = Query(None, description="Filter by attached tag id"),
    q: Optional[str] = Query(None, description="Search text for title/description"),
    sort: Optional[str] = Query("score", description="Sort by: score, [-]created_at, [-]updated_at, [-]priority"),
    order: Optional[str] = Query(None, description="Override sort direction: 'asc' or 'desc'"),
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
    clock: Callable[[], datetime] = Depends(get_clock),
    algorithm: ScoringAlgorithm = Depends(get_ranking_algorithm),
) -> PaginationEnvelope:
    """
    List todos with pagination and filters.
    """
    normalized_sort = (sort or "score").strip().lower()
    field = normalized_sort.lstrip("-")
    if field != "score" and field not in SORTABLE_FIELDS:
        field, normalized_sort = "score", "score"
    # Score is always highest-first unless order says otherwise.
    descending = True if field == "score" else normalized_sort.startswith("-")
    if order:
        ord_norm = order.strip().lower()
        if ord_norm not in {"asc", "desc"}:
            raise HTTPException(status_code=400, detail="order must be 'asc' or 'desc'")
        descending = ord_norm == "desc"

    query = TodoFilter(
        archived=archived,
        status=status_filter,
        tag_id=tag_id,
        search=q.strip() if q and q.strip() else None,
    )
    items = repo.list_todos(user_id, query)

    if field == "score":
        weights = sort_settings.get_settings(repo, user_id)
        ordered = rank(items, weights, clock(), algorithm)
        if not descending:
            ordered.reverse()
    else:
        ordered = sort_todos(items, field, descending)

    # Pydantic model will validate and serialize the helper's dict
    return PaginationEnvelope(**page_envelope(ordered, limit, offset))


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Get Todo",
    description="Get a single Todo item by ID.",
    responses={
        200: {"description": "Todo found"},
        404: {"description": "Todo not found"},
    },
)
def get_todo(
    todo_id: int,
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> TodoOut:
    """
    Retrieve a single Todo item by its ID.
    """
    return _found(repo.get_todo(user_id, todo_id))


# PUBLIC_INTERFACE
@router.put(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Replace Todo",
    description=(
        "Replace an existing Todo item. Any fields omitted will be set to their default/null "
        "equivalent as per the schema."
    ),
    responses={
        200: {"description": "Todo updated"},
        404: {"description": "Todo not found"},
    },
)
def put_todo(
    todo_id: int,
    payload: TodoCreate,
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> TodoOut:
    """
    Full update (replace) semantics implemented via the partial-update capable repository by
    mapping TodoCreate into TodoUpdate fields.
    """
    update = TodoUpdate(
        title=payload.title,
        description=payload.description,
        status=payload.status,
        priority=payload.priority,
        archived=payload.archived,
        due_date=payload.due_date,
        tags=payload.tags,
    )
    updated = _found(repo.update_todo(user_id, todo_id, update))
    logger.info(f"[todos] replaced id={todo_id} user={user_id}")
    return updated


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Update Todo",
    description="Partially update fields of a Todo item.",
    responses={
        200: {"description": "Todo updated"},
        404: {"description": "Todo not found"},
    },
)
def patch_todo(
    todo_id: int,
    payload: TodoUpdate,
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> TodoOut:
    """
    Partial update of a Todo item.
    """
    updated = _found(repo.update_todo(user_id, todo_id, payload))
    logger.info(f"[todos] updated id={todo_id} user={user_id} fields={sorted(payload.model_fields_set)}")
    return updated


# PUBLIC_INTERFACE
@router.post(
    "/{todo_id}/archive",
    response_model=TodoOut,
    summary="Archive Todo",
    responses={404: {"description": "Todo not found"}},
)
def archive_todo(
    todo_id: int,
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> TodoOut:
    """Move a todo to the archive list."""
    archived = _found(repo.update_todo(user_id, todo_id, TodoUpdate(archived=True)))
    logger.info(f"[todos] archived id={todo_id} user={user_id}")
    return archived


# PUBLIC_INTERFACE
@router.post(
    "/{todo_id}/unarchive",
    response_model=TodoOut,
    summary="Unarchive Todo",
    responses={404: {"description": "Todo not found"}},
)
def unarchive_todo(
    todo_id: int,
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> TodoOut:
    """Move a todo back to the active list."""
    restored = _found(repo.update_todo(user_id, todo_id, TodoUpdate(archived=False)))
    logger.info(f"[todos] unarchived id={todo_id} user={user_id}")
    return restored


# PUBLIC_INTERFACE
@router.put(
    "/{todo_id}/tags/{tag_id}",
    response_model=TodoOut,
    summary="Attach Tag",
    responses={404: {"description": "Todo or tag not found"}},
)
def attach_tag(
    todo_id: int,
    tag_id: int,
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> TodoOut:
    item = repo.attach_tag(user_id, todo_id, tag_id)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo or tag not found")
    return TodoOut(**item)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}/tags/{tag_id}",
    response_model=TodoOut,
    summary="Detach Tag",
    responses={404: {"description": "Todo or tag not found"}},
)
def detach_tag(
    todo_id: int,
    tag_id: int,
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> TodoOut:
    item = repo.detach_tag(user_id, todo_id, tag_id)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo or tag not found")
    return TodoOut(**item)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Todo",
    description="Delete a Todo item by ID.",
    responses={
        204: {"description": "Todo deleted"},
        404: {"description": "Todo not found"},
    },
)
def delete_todo(
    todo_id: int,
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> None:
    """
    Delete a Todo. Returns 204 on success, 404 if not found.
    """
    ok = repo.delete_todo(user_id, todo_id)
    if not ok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    logger.info(f"[todos] deleted id={todo_id} user={user_id}")
    return None
