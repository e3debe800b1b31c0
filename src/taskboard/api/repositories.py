from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from threading import RLock
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..mentions import match_users
from .models import MentionEntity, NoteEntity, Priority, TagEntity, TodoEntity, UserEntity
from .schemas import NoteCreate, TodoCreate, TodoUpdate
from .settings import get_settings

logger = logging.getLogger(__name__)

SORT_FIELDS = ("created_at", "priority", "title")
SORT_ORDERS = ("asc", "desc")


@dataclass(frozen=True)
class ListQuery:
    """
    Query parameters for listing todos.
    """
    page: int = 1
    limit: Optional[int] = 10  # None returns every matching todo
    owner_id: Optional[str] = None
    tag: Optional[str] = None  # exact, case-sensitive tag name
    priority: Optional[Priority] = None
    mentioned_user: Optional[str] = None  # email of a mentioned user
    search: Optional[str] = None
    sort_by: str = "created_at"  # allowed: created_at, priority, title
    sort_order: str = "desc"  # asc or desc

    @property
    def offset(self) -> int:
        if self.limit is None:
            return 0
        return (max(self.page, 1) - 1) * max(self.limit, 0)


# PUBLIC_INTERFACE
class Repository(ABC):
    """Abstract repository contract for the taskboard storage backends."""

    # users

    @abstractmethod
    def create_user(self, name: str, username: Optional[str], email: str, password_hash: str) -> UserEntity:
        """Create and return a new user."""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[UserEntity]:
        """Return a user by id, or None if not found."""

    @abstractmethod
    def get_user_by_login(self, login: str) -> Optional[UserEntity]:
        """Return the user whose email or username equals `login` (case-insensitive)."""

    @abstractmethod
    def list_users(self) -> List[UserEntity]:
        """Return every user in directory order."""

    @abstractmethod
    def find_users_by_names(self, names: Sequence[str]) -> List[UserEntity]:
        """Return users whose username or name equals one of `names`, case-insensitive."""

    # tags

    @abstractmethod
    def get_tags(self, tag_ids: Sequence[str]) -> List[TagEntity]:
        """Return the tags for `tag_ids`, in the given order."""

    @abstractmethod
    def list_tags(self) -> List[TagEntity]:
        """Return the shared tag vocabulary sorted by name."""

    @abstractmethod
    def ensure_tags(self, names: Sequence[str]) -> List[TagEntity]:
        """Find-or-create one tag per name, preserving order."""

    # todos

    @abstractmethod
    def create_todo(self, owner_id: str, data: TodoCreate) -> TodoEntity:
        """Create and return a new todo owned by `owner_id`."""

    @abstractmethod
    def get_todo(self, todo_id: str) -> Optional[TodoEntity]:
        """Return a todo by id, or None if not found."""

    @abstractmethod
    def update_todo(self, todo_id: str, data: TodoUpdate) -> Optional[TodoEntity]:
        """Apply the fields set on `data`. Return the updated todo or None if not found."""

    @abstractmethod
    def delete_todo(self, todo_id: str) -> bool:
        """Delete a todo with its notes and mentions. Return False if not found."""

    @abstractmethod
    def list_todos(self, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        """
        Return one page of todos and the total count matching the filters.
        - Filters: owner, exact tag name, priority, mentioned user email
        - Search: case-insensitive substring of title, description or any tag name
        - Sorting by created_at/priority/title (asc/desc)
        """

    # mentions

    @abstractmethod
    def list_mentions(self, todo_id: str) -> List[MentionEntity]:
        """Return the mentions of a todo."""

    @abstractmethod
    def replace_mentions(self, todo_id: str, user_ids: Sequence[str]) -> None:
        """Atomically drop every mention of `todo_id` and insert one per user id."""

    # notes

    @abstractmethod
    def create_note(self, user_id: str, data: NoteCreate) -> Optional[NoteEntity]:
        """Create a note. Return None if the parent todo does not exist."""

    @abstractmethod
    def list_notes(self, todo_id: str) -> List[NoteEntity]:
        """Return the notes of a todo, newest first."""


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._users: Dict[str, UserEntity] = {}
        self._tags: Dict[str, TagEntity] = {}
        self._tags_by_name: Dict[str, str] = {}
        self._todos: Dict[str, TodoEntity] = {}
        self._todo_seq: Dict[str, int] = {}
        self._notes: Dict[str, NoteEntity] = {}
        self._mentions: Dict[str, List[MentionEntity]] = {}
        self._seq = 0

    def _now(self) -> datetime:
        return datetime.now()

    def _next_seq(self) -> int:
        with self._lock:
            self._seq += 1
            return self._seq

    # users

    def create_user(self, name: str, username: Optional[str], email: str, password_hash: str) -> UserEntity:
        user: UserEntity = {
            "id": _new_id(),
            "name": name,
            "username": username,
            "email": email,
            "password_hash": password_hash,
        }
        with self._lock:
            self._users[user["id"]] = user
        return user.copy()

    def get_user(self, user_id: str) -> Optional[UserEntity]:
        with self._lock:
            user = self._users.get(user_id)
            return None if user is None else user.copy()

    def get_user_by_login(self, login: str) -> Optional[UserEntity]:
        needle = login.strip().casefold()
        with self._lock:
            for user in self._users.values():
                if user["email"].casefold() == needle or (user["username"] or "").casefold() == needle:
                    return user.copy()
        return None

    def list_users(self) -> List[UserEntity]:
        with self._lock:
            return [u.copy() for u in self._users.values()]

    def find_users_by_names(self, names: Sequence[str]) -> List[UserEntity]:
        return match_users(self.list_users(), names)  # type: ignore[return-value]

    # tags

    def get_tags(self, tag_ids: Sequence[str]) -> List[TagEntity]:
        with self._lock:
            return [self._tags[t].copy() for t in tag_ids if t in self._tags]

    def list_tags(self) -> List[TagEntity]:
        with self._lock:
            return sorted((t.copy() for t in self._tags.values()), key=lambda t: t["name"])

    def ensure_tags(self, names: Sequence[str]) -> List[TagEntity]:
        out: List[TagEntity] = []
        with self._lock:
            for name in names:
                tag_id = self._tags_by_name.get(name)
                if tag_id is None:
                    tag_id = _new_id()
                    self._tags[tag_id] = {"id": tag_id, "name": name}
                    self._tags_by_name[name] = tag_id
                    logger.debug("Created tag %r", name)
                out.append(self._tags[tag_id].copy())
        return out

    # todos

    def create_todo(self, owner_id: str, data: TodoCreate) -> TodoEntity:
        now = self._now()
        tags = self.ensure_tags(data.tags or [])
        entity: TodoEntity = {
            "id": _new_id(),
            "title": data.title,
            "description": data.description or "",
            "priority": data.priority,
            "user_id": owner_id,
            "tag_ids": [t["id"] for t in tags],
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            self._todos[entity["id"]] = entity
            self._todo_seq[entity["id"]] = self._next_seq()
            self._mentions[entity["id"]] = []
        return self._copy_todo(entity)

    @staticmethod
    def _copy_todo(todo: TodoEntity) -> TodoEntity:
        copied = todo.copy()
        copied["tag_ids"] = list(todo["tag_ids"])
        return copied

    def get_todo(self, todo_id: str) -> Optional[TodoEntity]:
        with self._lock:
            item = self._todos.get(todo_id)
            return None if item is None else self._copy_todo(item)

    def update_todo(self, todo_id: str, data: TodoUpdate) -> Optional[TodoEntity]:
        fields = data.model_fields_set
        with self._lock:
            existing = self._todos.get(todo_id)
            if existing is None:
                return None

            # Update only provided fields
            updated = self._copy_todo(existing)
            if "title" in fields and data.title is not None:
                updated["title"] = data.title
            if "description" in fields:
                updated["description"] = data.description or ""
            if "priority" in fields and data.priority is not None:
                updated["priority"] = data.priority
            if "tags" in fields and data.tags is not None:
                updated["tag_ids"] = [t["id"] for t in self.ensure_tags(data.tags)]
            updated["updated_at"] = self._now()

            self._todos[todo_id] = updated
            return self._copy_todo(updated)

    def delete_todo(self, todo_id: str) -> bool:
        with self._lock:
            if self._todos.pop(todo_id, None) is None:
                return False
            self._todo_seq.pop(todo_id, None)
            self._mentions.pop(todo_id, None)
            for note_id in [n["id"] for n in self._notes.values() if n["todo_id"] == todo_id]:
                del self._notes[note_id]
            return True

    def _tag_names(self, todo: TodoEntity) -> List[str]:
        return [self._tags[t]["name"] for t in todo["tag_ids"] if t in self._tags]

    def _mentioned_emails(self, todo_id: str) -> List[str]:
        emails = []
        for m in self._mentions.get(todo_id, []):
            user = self._users.get(m["user_id"])
            if user is not None:
                emails.append(user["email"])
        return emails

    def list_todos(self, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        q = query or ListQuery()
        with self._lock:
            items: Iterable[TodoEntity] = self._todos.values()

            # Filtering
            if q.owner_id is not None:
                items = [t for t in items if t["user_id"] == q.owner_id]

            if q.tag:
                items = [t for t in items if q.tag in self._tag_names(t)]

            if q.priority is not None:
                items = [t for t in items if t["priority"] == q.priority]

            if q.mentioned_user:
                items = [t for t in items if q.mentioned_user in self._mentioned_emails(t["id"])]

            if q.search:
                s = q.search.casefold()

                def matches(t: TodoEntity) -> bool:
                    if s in t["title"].casefold() or s in (t["description"] or "").casefold():
                        return True
                    return any(s in name.casefold() for name in self._tag_names(t))

                items = [t for t in items if matches(t)]

            items = list(items)
            total = len(items)

            # Sorting; insertion sequence breaks ties in the same direction
            field = q.sort_by if q.sort_by in SORT_FIELDS else "created_at"
            reverse = q.sort_order != "asc"

            def sort_key(t: TodoEntity):
                seq = self._todo_seq.get(t["id"], 0)
                if field == "priority":
                    return (Priority(t["priority"]).rank, seq)
                return (t[field], seq)  # type: ignore[literal-required]

            items_sorted = sorted(items, key=sort_key, reverse=reverse)

            # Pagination
            start = q.offset
            end = None if q.limit is None else start + max(q.limit, 0)
            page = items_sorted[start:end]

            # Return copies to avoid external mutation
            return [self._copy_todo(t) for t in page], total

    # mentions

    def list_mentions(self, todo_id: str) -> List[MentionEntity]:
        with self._lock:
            return [m.copy() for m in self._mentions.get(todo_id, [])]

    def replace_mentions(self, todo_id: str, user_ids: Sequence[str]) -> None:
        replacement: List[MentionEntity] = []
        for user_id in dict.fromkeys(user_ids):
            replacement.append({"todo_id": todo_id, "user_id": user_id})
        with self._lock:
            if todo_id not in self._todos:
                return
            self._mentions[todo_id] = replacement

    # notes

    def create_note(self, user_id: str, data: NoteCreate) -> Optional[NoteEntity]:
        with self._lock:
            if data.todo_id not in self._todos:
                return None
            note: NoteEntity = {
                "id": _new_id(),
                "content": data.content,
                "todo_id": data.todo_id,
                "user_id": user_id,
                "created_at": self._now(),
            }
            self._notes[note["id"]] = note
            return note.copy()

    def list_notes(self, todo_id: str) -> List[NoteEntity]:
        with self._lock:
            # dict preserves insertion order, so reversing gives newest first
            notes = [n.copy() for n in self._notes.values() if n["todo_id"] == todo_id]
        notes.reverse()
        return notes


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_repository() -> Repository:
    """
    Return the process-wide repository configured by settings.
    - memory: InMemoryRepository
    - sqlite: SQLiteRepository backed by SQLITE_DB_PATH
    """
    settings = get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteRepository

        logger.info("Using sqlite repository at %s", settings.sqlite_db_path)
        return SQLiteRepository(settings.sqlite_db_path)
    logger.info("Using in-memory repository")
    return InMemoryRepository()
