from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..auth import get_current_user
from ..models import Priority, TodoEntity, UserEntity
from ..repositories import SORT_FIELDS, SORT_ORDERS, ListQuery, Repository, get_repository
from ..schemas import PaginationOut, TodoCreate, TodoOut, TodoUpdate
from ..services import MentionSynchronizer, detail_todo
from ..settings import get_settings
from ..utils import pagination_envelope

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/todos",
    tags=["todos"],
)

# camelCase spellings used by browser clients
_SORT_ALIASES = {"createdat": "created_at", "created_at": "created_at", "priority": "priority", "title": "title"}


class PaginationEnvelope(BaseModel):
    """
    Envelope for paginated list responses.
    """
    items: List[TodoOut] = Field(..., description="One page of Todo items")
    pagination: PaginationOut = Field(..., description="total, page, limit, totalPages")


def _get_repo(repo: Repository = Depends(get_repository)) -> Repository:
    """
    Dependency wrapper for repository to keep signatures clean.
    """
    return repo


def _todo_or_404(repo: Repository, todo_id: str) -> TodoEntity:
    todo = repo.get_todo(todo_id)
    if todo is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    return todo


def _require_owner(todo: TodoEntity, user: UserEntity) -> None:
    if todo["user_id"] != user["id"]:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not the owner of this todo")


def _out(repo: Repository, todo: TodoEntity) -> TodoOut:
    return TodoOut(**detail_todo(repo, todo))  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TodoOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a new Todo item, persist the mentions found in its description and return it.",
    responses={
        201: {"description": "Todo created successfully"},
        422: {"description": "Validation error"},
    },
)
def create_todo(
    payload: TodoCreate,
    repo: Repository = Depends(_get_repo),
    user: UserEntity = Depends(get_current_user),
) -> TodoOut:
    """
    Create a new Todo owned by the caller.
    """
    mentions = MentionSynchronizer(repo)
    mentioned = mentions.resolve(payload.description)
    created = repo.create_todo(user["id"], payload)
    mentions.apply(created["id"], mentioned)
    logger.info("User %s created todo %s", user["id"], created["id"])
    return _out(repo, created)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=PaginationEnvelope,
    summary="List Todos",
    description=(
        "List todos with optional filters and pagination.\n\n"
        "Query parameters:\n"
        "- page: 1-based page number\n"
        "- limit: page size (defaults to DEFAULT_PAGE_SIZE)\n"
        "- tag: exact tag name\n"
        "- priority: HIGH, MEDIUM or LOW\n"
        "- mentioned_user: email of a mentioned user\n"
        "- user_id: owner whose todos are listed (defaults to the caller)\n"
        "- search: case-insensitive text matched against title, description and tag names\n"
        "- sort_by: created_at, priority or title\n"
        "- sort_order: asc or desc\n\n"
        "Returns the page items and pagination metadata."
    ),
    responses={
        200: {"description": "List retrieved successfully"},
        400: {"description": "Invalid query parameters"},
    },
)
def list_todos(
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: Optional[int] = Query(None, ge=1, description="Page size"),
    tag: Optional[str] = Query(None, description="Filter by exact tag name"),
    priority: Optional[Priority] = Query(None, description="Filter by priority"),
    mentioned_user: Optional[str] = Query(None, description="Filter by email of a mentioned user"),
    user_id: Optional[str] = Query(None, description="Owner id; defaults to the caller"),
    search: Optional[str] = Query(None, description="Search text for title/description/tags"),
    sort_by: str = Query("created_at", description="Sort field: created_at, priority or title"),
    sort_order: str = Query("desc", description="Sort direction: 'asc' or 'desc'"),
    repo: Repository = Depends(_get_repo),
    user: UserEntity = Depends(get_current_user),
) -> PaginationEnvelope:
    """
    List todos with pagination and filters.
    """
    settings = get_settings()
    page_size = limit if limit is not None else settings.default_page_size
    if page_size > settings.max_page_size:
        raise HTTPException(status_code=400, detail=f"limit must be at most {settings.max_page_size}")

    field = _SORT_ALIASES.get(sort_by.strip().lower())
    if field not in SORT_FIELDS:
        raise HTTPException(status_code=400, detail="sort_by must be one of created_at, priority, title")
    order = sort_order.strip().lower()
    if order not in SORT_ORDERS:
        raise HTTPException(status_code=400, detail="sort_order must be 'asc' or 'desc'")

    query = ListQuery(
        page=page,
        limit=page_size,
        owner_id=user_id or user["id"],
        tag=tag or None,
        priority=priority,
        mentioned_user=mentioned_user or None,
        search=search.strip() if search and search.strip() else None,
        sort_by=field,
        sort_order=order,
    )
    items, total = repo.list_todos(query)
    envelope = pagination_envelope(
        items=[_out(repo, it) for it in items],
        total=total,
        page=page,
        limit=page_size,
    )
    # Pydantic model will validate and serialize the helper's dict
    return PaginationEnvelope(**envelope)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Get Todo",
    description="Get a single Todo item by ID with its tags, notes and mentions.",
    responses={
        200: {"description": "Todo found"},
        404: {"description": "Todo not found"},
    },
)
def get_todo(
    todo_id: str,
    repo: Repository = Depends(_get_repo),
    user: UserEntity = Depends(get_current_user),
) -> TodoOut:
    """
    Retrieve a single Todo item by its ID.
    """
    return _out(repo, _todo_or_404(repo, todo_id))


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Update Todo",
    description=(
        "Partially update fields of a Todo item. Sending a description replaces the whole "
        "mention set with the users mentioned in the new text; sending tags replaces the tag set."
    ),
    responses={
        200: {"description": "Todo updated"},
        403: {"description": "Caller does not own the todo"},
        404: {"description": "Todo not found"},
    },
)
def patch_todo(
    todo_id: str,
    payload: TodoUpdate,
    repo: Repository = Depends(_get_repo),
    user: UserEntity = Depends(get_current_user),
) -> TodoOut:
    """
    Partial update of a Todo item.
    """
    _require_owner(_todo_or_404(repo, todo_id), user)

    description_changed = "description" in payload.model_fields_set
    mentions = MentionSynchronizer(repo)
    # resolve before writing anything so a failed lookup leaves the todo as it was
    mentioned = mentions.resolve(payload.description) if description_changed else None

    updated = repo.update_todo(todo_id, payload)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    if mentioned is not None:
        mentions.apply(todo_id, mentioned)
    return _out(repo, updated)


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    summary="Delete Todo",
    description="Delete a Todo item by ID together with its notes and mentions.",
    responses={
        200: {"description": "Todo deleted"},
        403: {"description": "Caller does not own the todo"},
        404: {"description": "Todo not found"},
    },
)
def delete_todo(
    todo_id: str,
    repo: Repository = Depends(_get_repo),
    user: UserEntity = Depends(get_current_user),
) -> dict:
    """
    Delete a Todo. Returns {"success": true}, 404 if not found.
    """
    _require_owner(_todo_or_404(repo, todo_id), user)
    ok = repo.delete_todo(todo_id)
    if not ok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    logger.info("User %s deleted todo %s", user["id"], todo_id)
    return {"success": True}
