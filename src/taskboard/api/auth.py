from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from passlib.context import CryptContext

from .models import UserEntity
from .repositories import Repository, get_repository

logger = logging.getLogger(__name__)

_security = HTTPBasic(auto_error=False)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Basic"},
    )


# PUBLIC_INTERFACE
def authenticate(repo: Repository, login: str, password: str) -> Optional[UserEntity]:
    """Return the user identified by `login` (email or username) when `password` matches."""
    user = repo.get_user_by_login(login)
    if user is None or not verify_password(password, user["password_hash"]):
        return None
    return user


# PUBLIC_INTERFACE
def get_current_user(
    creds: Optional[HTTPBasicCredentials] = Depends(_security),
    repo: Repository = Depends(get_repository),
) -> UserEntity:
    """
    FastAPI dependency resolving the calling user from HTTP Basic credentials.

    The username part may be the account email or its username.

    Raises:
        HTTPException(401) if credentials are missing or invalid.
    """
    if creds is None or not creds.username or creds.password is None:
        raise _unauthorized("Not authenticated")

    user = authenticate(repo, creds.username, creds.password)
    if user is None:
        logger.info("Rejected credentials for %r", creds.username)
        raise _unauthorized("Invalid authentication credentials")
    return user
