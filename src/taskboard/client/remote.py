"""
Remote collaborator used by the client engine.

`RemoteApi` is the abstract contract; `HttpRemoteApi` implements it over the
taskboard HTTP API with an `httpx.AsyncClient`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Protocol, Sequence, Tuple, Union

import httpx

from ..api.schemas import NoteCreate, TodoCreate, TodoUpdate
from ..errors import NotFoundError, RemoteError, ValidationError

if TYPE_CHECKING:
    from .queries import TodoListParams

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


# PUBLIC_INTERFACE
class MutationKind(str, Enum):
    CREATE_TODO = "createTodo"
    UPDATE_TODO = "updateTodo"
    DELETE_TODO = "deleteTodo"
    CREATE_NOTE = "createNote"


@dataclass(frozen=True)
class UpdateTodoRequest:
    todo_id: str
    patch: TodoUpdate


MutationPayload = Union[TodoCreate, UpdateTodoRequest, str, NoteCreate]

_PAYLOAD_TYPES = {
    MutationKind.CREATE_TODO: TodoCreate,
    MutationKind.UPDATE_TODO: UpdateTodoRequest,
    MutationKind.DELETE_TODO: str,
    MutationKind.CREATE_NOTE: NoteCreate,
}


# PUBLIC_INTERFACE
class RemoteApi(Protocol):
    """
    What the client engine needs from the server.

    submit() returns the authoritative entity for creates and updates and a
    success marker for deletes, or raises ValidationError, NotFoundError or
    RemoteError.
    """

    async def submit(self, kind: MutationKind, payload: MutationPayload) -> Dict[str, Any]:
        ...

    async def fetch_list(self, params: "TodoListParams") -> Tuple[List[Dict[str, Any]], int]:
        ...

    async def fetch_notes(self, todo_id: str) -> List[Dict[str, Any]]:
        ...

    async def fetch_todo(self, todo_id: str) -> Dict[str, Any]:
        ...

    async def fetch_users(self) -> List[Dict[str, Any]]:
        ...

    async def resolve_users(self, names: Sequence[str]) -> List[Dict[str, Any]]:
        ...


def _error_message(response: httpx.Response) -> Tuple[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return f"API error: {response.status_code}", None
    if not isinstance(body, dict):
        return f"API error: {response.status_code}", body
    detail = body.get("detail")
    message = body.get("message") or (detail if isinstance(detail, str) else None)
    return message or f"API error: {response.status_code}", detail


# PUBLIC_INTERFACE
class HttpRemoteApi:
    """
    RemoteApi over HTTP.

    The caller owns the `httpx.AsyncClient` (base URL, auth, transport) and
    closes it. No timeout is imposed here beyond whatever the client carries.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, f"{API_PREFIX}{path}", **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise RemoteError(f"Request failed: {exc}") from exc

        if response.is_success:
            return response.json()

        message, details = _error_message(response)
        if response.status_code in (400, 422):
            raise ValidationError(message, details)
        if response.status_code == 404:
            raise NotFoundError(message)
        raise RemoteError(message, status_code=response.status_code)

    async def submit(self, kind: MutationKind, payload: MutationPayload) -> Dict[str, Any]:
        expected = _PAYLOAD_TYPES.get(kind)
        if expected is None:
            raise ValueError(f"unknown mutation kind: {kind!r}")
        if not isinstance(payload, expected):
            raise TypeError(f"{kind.value} expects {expected.__name__}, got {type(payload).__name__}")

        if isinstance(payload, TodoCreate):
            return await self._request("POST", "/todos/", json=payload.model_dump(mode="json", exclude_none=True))
        if isinstance(payload, UpdateTodoRequest):
            body = payload.patch.model_dump(mode="json", exclude_unset=True)
            return await self._request("PATCH", f"/todos/{payload.todo_id}", json=body)
        if isinstance(payload, NoteCreate):
            return await self._request("POST", "/notes/", json=payload.model_dump(mode="json"))
        return await self._request("DELETE", f"/todos/{payload}")

    async def fetch_list(self, params: "TodoListParams") -> Tuple[List[Dict[str, Any]], int]:
        data = await self._request("GET", "/todos/", params=params.to_query())
        return data["items"], int(data["pagination"]["total"])

    async def fetch_notes(self, todo_id: str) -> List[Dict[str, Any]]:
        return await self._request("GET", "/notes/", params={"todo_id": todo_id})

    async def fetch_users(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/users")

    async def resolve_users(self, names: Sequence[str]) -> List[Dict[str, Any]]:
        """Users whose username or name equals one of `names`, case-insensitive."""
        if not names:
            return []
        text = " ".join(f"@{name}" for name in names)
        return await self._request("GET", "/users/mentioned", params={"text": text})

    async def fetch_todo(self, todo_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/todos/{todo_id}")
