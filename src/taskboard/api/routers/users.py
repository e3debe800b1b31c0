"""Signup, the user directory and mention preview routes."""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...mentions import resolve_mentions
from ..auth import get_current_user, hash_password
from ..models import UserEntity
from ..repositories import Repository, get_repository
from ..schemas import UserOut, UserSignup
from ..services import public_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["users"])


# PUBLIC_INTERFACE
@router.post(
    "/auth/signup",
    status_code=status.HTTP_201_CREATED,
    summary="Sign up",
    description="Register a new account. Usernames are what other users @mention.",
    responses={
        201: {"description": "User created"},
        409: {"description": "Email already registered"},
    },
)
def signup(payload: UserSignup, repo: Repository = Depends(get_repository)) -> dict:
    if repo.get_user_by_login(payload.email) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User with this email already exists")
    user = repo.create_user(
        name=payload.name,
        username=payload.username,
        email=payload.email,
        password_hash=hash_password(payload.password),
    )
    logger.info("Registered user %s", user["id"])
    return {"message": "User created successfully", "user": public_user(user)}


# PUBLIC_INTERFACE
@router.get("/auth/me", response_model=UserOut, summary="Current user")
def me(user: UserEntity = Depends(get_current_user)) -> UserOut:
    return UserOut(**public_user(user))  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/users",
    response_model=List[UserOut],
    summary="List Users",
    description="The user directory, used for @mention suggestions and switching between users' lists.",
)
def list_users(
    repo: Repository = Depends(get_repository),
    user: UserEntity = Depends(get_current_user),
) -> List[UserOut]:
    return [UserOut(**public_user(u)) for u in repo.list_users()]  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/users/mentioned",
    response_model=List[UserOut],
    summary="Resolve Mentions",
    description="Preview which users the @mentions in a piece of text resolve to.",
)
def resolve_text_mentions(
    text: str = Query("", description="Free text containing @name tokens"),
    repo: Repository = Depends(get_repository),
    user: UserEntity = Depends(get_current_user),
) -> List[UserOut]:
    return [UserOut(**public_user(u)) for u in resolve_mentions(text, repo)]  # type: ignore[arg-type]
