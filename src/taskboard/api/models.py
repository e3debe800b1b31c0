from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional, TypedDict


# PUBLIC_INTERFACE
class Priority(str, Enum):
    """Todo priority. Ascending sort order is HIGH, MEDIUM, LOW."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


class UserEntity(TypedDict):
    """
    A user record as stored by the repositories.

    `password_hash` never leaves the server; schemas drop it on output.
    """

    id: str
    name: str
    username: Optional[str]
    email: str
    password_hash: str


class TagEntity(TypedDict):
    id: str
    name: str


class NoteEntity(TypedDict):
    id: str
    content: str
    todo_id: str
    user_id: str
    created_at: datetime


class MentionEntity(TypedDict):
    todo_id: str
    user_id: str


# PUBLIC_INTERFACE
class TodoEntity(TypedDict):
    """
    A Todo as held by storage backends.

    Fields:
    - id: server-assigned identifier
    - title: short title (1..100 chars, trimmed via schemas)
    - description: free text, may contain @mentions ("" when empty)
    - priority: HIGH | MEDIUM | LOW
    - user_id: owner id; every persisted todo has exactly one owner
    - tag_ids: ordered tag references, unique by tag name
    - created_at / updated_at: timestamps set by the backend
    """

    id: str
    title: str
    description: str
    priority: Priority
    user_id: str
    tag_ids: List[str]
    created_at: datetime
    updated_at: datetime


class DetailedTodo(TypedDict):
    """A todo with its relations resolved: tags, notes (with author) and mentions (with user)."""

    id: str
    title: str
    description: str
    priority: Priority
    user_id: str
    created_at: datetime
    updated_at: datetime
    tags: List[TagEntity]
    notes: List[dict]
    mentions: List[dict]
