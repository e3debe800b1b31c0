from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..auth import get_current_user
from ..models import UserEntity
from ..repositories import Repository, get_repository
from ..schemas import NoteCreate, NoteOut
from ..services import public_user

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/notes",
    tags=["notes"],
)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=List[NoteOut],
    summary="List Notes",
    description="Notes of a todo, newest first, each with its author.",
    responses={400: {"description": "todo_id missing"}},
)
def list_notes(
    todo_id: Optional[str] = Query(None, description="Todo whose notes are listed"),
    repo: Repository = Depends(get_repository),
    user: UserEntity = Depends(get_current_user),
) -> List[NoteOut]:
    if not todo_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Todo ID is required")
    return [NoteOut(**note, user=public_user(repo.get_user(note["user_id"]))) for note in repo.list_notes(todo_id)]


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=NoteOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Note",
    description="Attach an immutable note to a todo.",
    responses={
        201: {"description": "Note created"},
        404: {"description": "Todo not found"},
    },
)
def create_note(
    payload: NoteCreate,
    repo: Repository = Depends(get_repository),
    user: UserEntity = Depends(get_current_user),
) -> NoteOut:
    note = repo.create_note(user["id"], payload)
    if note is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    logger.info("User %s added note %s to todo %s", user["id"], note["id"], payload.todo_id)
    return NoteOut(**note, user=public_user(user))
