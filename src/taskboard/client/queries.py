"""Read-through list and entity queries over the client cache."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..api.models import Priority
from ..api.utils import pagination_meta
from ..errors import ValidationError
from .cache import NOTES, TODO, TODOS, USERS, CacheKey, CacheStore
from .remote import RemoteApi

logger = logging.getLogger(__name__)

SORT_FIELDS = ("created_at", "priority", "title")
SORT_ORDERS = ("asc", "desc")


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class TodoListParams:
    """
    Filter, sort and page parameters of one todo list view.

    Equal parameters produce equal cache keys, so every view of the same page
    shares a single cache entry.
    """

    page: int = 1
    limit: int = 10
    owner_id: Optional[str] = None
    tag: Optional[str] = None
    priority: Optional[Priority] = None
    mentioned_user: Optional[str] = None
    search: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValidationError("page must be >= 1")
        if self.limit < 1:
            raise ValidationError("limit must be >= 1")
        if self.sort_by not in SORT_FIELDS:
            raise ValidationError(f"sort_by must be one of {', '.join(SORT_FIELDS)}")
        if self.sort_order not in SORT_ORDERS:
            raise ValidationError("sort_order must be 'asc' or 'desc'")
        if self.priority is not None:
            try:
                object.__setattr__(self, "priority", Priority(self.priority))
            except ValueError as exc:
                raise ValidationError(f"unknown priority {self.priority!r}") from exc

    def cache_key(self) -> CacheKey:
        params = asdict(self)
        if self.priority is not None:
            params["priority"] = self.priority.value
        return CacheKey.for_query(TODOS, params)

    def to_query(self) -> Dict[str, Any]:
        """Request parameters for the list endpoint, dropping unset filters."""
        query: Dict[str, Any] = {
            "page": self.page,
            "limit": self.limit,
            "sort_by": self.sort_by,
            "sort_order": self.sort_order,
        }
        if self.owner_id:
            query["user_id"] = self.owner_id
        if self.tag:
            query["tag"] = self.tag
        if self.priority is not None:
            query["priority"] = self.priority.value
        if self.mentioned_user:
            query["mentioned_user"] = self.mentioned_user
        if self.search:
            query["search"] = self.search
        return query


def notes_key(todo_id: str) -> CacheKey:
    return CacheKey.for_entity(NOTES, todo_id)


def todo_key(todo_id: str) -> CacheKey:
    return CacheKey.for_entity(TODO, todo_id)


USERS_KEY = CacheKey(USERS)


Fetcher = Callable[[], Awaitable[Any]]


# PUBLIC_INTERFACE
class ListQueryEngine:
    """
    Read-through access to todo lists, notes, single todos and the user list.

    A present, non-stale entry is served from the store; an absent or
    invalidated one is fetched and written back whole. Keys read through the
    engine count as active readers and are refetched by `refetch_stale()`.
    """

    def __init__(self, store: CacheStore, remote: RemoteApi) -> None:
        self._store = store
        self._remote = remote
        self._active: Dict[CacheKey, Fetcher] = {}
        self._stale_active: Set[CacheKey] = set()
        store.subscribe(self._on_invalidate)

    def _on_invalidate(self, key: CacheKey) -> None:
        if key in self._active:
            self._stale_active.add(key)

    @property
    def active_keys(self) -> List[CacheKey]:
        return list(self._active)

    async def _read_through(self, key: CacheKey, fetch: Fetcher) -> Any:
        self._active[key] = lambda: self._refresh(key, fetch)
        if self._store.contains(key) and not self._store.is_stale(key):
            return self._store.read(key)
        return await self._refresh(key, fetch)

    async def _refresh(self, key: CacheKey, fetch: Fetcher) -> Any:
        value = await fetch()
        self._store.write(key, value)
        self._stale_active.discard(key)
        return self._store.read(key)

    async def todos(self, params: TodoListParams) -> Dict[str, Any]:
        """Return `{"items": [...], "pagination": {...}}` for one page."""

        async def fetch() -> Dict[str, Any]:
            items, total = await self._remote.fetch_list(params)
            logger.debug("Fetched page %d of todos: %d item(s) of %d", params.page, len(items), total)
            return {"items": list(items), "pagination": pagination_meta(total, params.page, params.limit)}

        return await self._read_through(params.cache_key(), fetch)

    async def todo(self, todo_id: str) -> Dict[str, Any]:
        return await self._read_through(todo_key(todo_id), lambda: self._remote.fetch_todo(todo_id))

    async def notes(self, todo_id: str) -> List[Dict[str, Any]]:
        """Notes of a todo, newest first."""
        return await self._read_through(notes_key(todo_id), lambda: self._remote.fetch_notes(todo_id))

    async def users(self) -> List[Dict[str, Any]]:
        return await self._read_through(USERS_KEY, self._remote.fetch_users)

    def release(self, key: CacheKey) -> None:
        """Stop treating `key` as actively read."""
        self._active.pop(key, None)
        self._stale_active.discard(key)

    async def refetch_stale(self) -> List[CacheKey]:
        """Refetch every actively read key that was invalidated. Returns the refreshed keys."""
        refreshed = []
        for key in [k for k in self._active if k in self._stale_active]:
            self._stale_active.discard(key)
            if self._store.contains(key) and not self._store.is_stale(key):
                continue
            await self._active[key]()
            refreshed.append(key)
        return refreshed
