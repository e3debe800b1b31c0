"""
Optimistic mutation coordinator.

Every mutation runs the same sequence: snapshot the affected cache keys,
write a tentative value, submit to the remote API, then either write the
authoritative result (SUCCESS) or restore the snapshots (FAILED). The
sequence is a plain state machine on a `Mutation` record so it can be driven
and inspected without a network.

Only one in-flight mutation per entity is meaningful. A second mutation on
the same todo that starts before the first resolves snapshots the first
one's optimistic state; rolling the second back therefore lands on that
intermediate state. Overlapping edits are neither merged nor queued.

Mutations on different todos may share a cached list. When another mutation
touched a list while this one was pending, a rollback reverts only this
mutation's own item in that list instead of restoring the whole snapshot.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from ..api.schemas import NoteCreate, TodoCreate, TodoUpdate
from ..errors import InvalidTransitionError, TaskboardError
from ..mentions import StaticDirectory, resolve_mentions
from .cache import TODOS, CacheKey, CacheStore, SnapshotToken
from .queries import USERS_KEY, notes_key, todo_key
from .remote import MutationKind, MutationPayload, RemoteApi, UpdateTodoRequest

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "temp-"


def temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temp_id(entity_id: str) -> bool:
    return str(entity_id).startswith(TEMP_ID_PREFIX)


class MutationState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Success:
    value: Any


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Failure:
    error: Exception


MutationResult = Union[Success, Failure]


@dataclass(frozen=True)
class Notification:
    """User-facing outcome message, e.g. rendered as a toast."""

    title: str
    description: str
    variant: str = "default"


# PUBLIC_INTERFACE
@dataclass(eq=False)
class Mutation:
    """
    One mutation invocation: PENDING, then SUCCESS or FAILED, both terminal.

    `snapshots` maps every affected cache key to the token needed to roll it back.
    `shared` holds the keys another mutation touched while this one was pending;
    `item_id` is the todo list item this mutation changes.
    """

    kind: MutationKind
    entity_id: str
    item_id: str = ""
    snapshots: Dict[CacheKey, SnapshotToken] = field(default_factory=dict)
    shared: Set[CacheKey] = field(default_factory=set)
    state: MutationState = MutationState.PENDING
    value: Any = None
    error: Optional[Exception] = None

    @property
    def affected_keys(self) -> List[CacheKey]:
        return list(self.snapshots)

    @property
    def result(self) -> Optional[MutationResult]:
        if self.state is MutationState.SUCCESS:
            return Success(self.value)
        if self.state is MutationState.FAILED:
            return Failure(self.error)  # type: ignore[arg-type]
        return None

    def _leave_pending(self, new_state: MutationState) -> None:
        if self.state is not MutationState.PENDING:
            raise InvalidTransitionError(f"{self.kind.value} mutation already {self.state.value}")
        self.state = new_state

    def succeed(self, value: Any) -> None:
        self._leave_pending(MutationState.SUCCESS)
        self.value = value

    def fail(self, error: Exception) -> None:
        self._leave_pending(MutationState.FAILED)
        self.error = error


def _tentative_tags(names: Iterable[str], known: Iterable[Dict[str, Any]] = ()) -> List[Dict[str, Any]]:
    # reuse ids of tags the todo already carries; new names use the name as id until the server answers
    by_name = {t["name"]: t for t in known}
    return [dict(by_name.get(name) or {"id": name, "name": name}) for name in names]


def _tentative_mentions(todo_id: str, description: str, users: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    matched = resolve_mentions(description, StaticDirectory(users))
    return [{"todo_id": todo_id, "user_id": u["id"], "user": dict(u)} for u in matched]


# PUBLIC_INTERFACE
def apply_patch(
    todo: Dict[str, Any],
    patch: TodoUpdate,
    users: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Merge the fields set on `patch` into a copy of a cached todo.

    Each patchable field is handled explicitly; nothing else on the patch can
    reach the todo. When the description changes and the user list is known,
    mentions are recomputed with the same resolver the server uses.
    """
    out = dict(todo)
    fields = patch.model_fields_set
    if "title" in fields and patch.title is not None:
        out["title"] = patch.title
    if "description" in fields:
        out["description"] = patch.description or ""
        if users is not None:
            out["mentions"] = _tentative_mentions(out["id"], out["description"], users)
    if "priority" in fields and patch.priority is not None:
        out["priority"] = patch.priority.value
    if "tags" in fields and patch.tags is not None:
        out["tags"] = _tentative_tags(patch.tags, todo.get("tags") or [])
    return out


def _replace_by_id(items: List[Dict[str, Any]], old_id: str, new: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Swap the item with `old_id` for `new`, keeping the first occurrence of every id."""
    out: List[Dict[str, Any]] = []
    seen: Set[str] = set()
    for item in items:
        candidate = new if item["id"] == old_id else item
        if candidate["id"] in seen:
            continue
        seen.add(candidate["id"])
        out.append(candidate)
    return out


def _undo_item(items: List[Dict[str, Any]], before: List[Dict[str, Any]], item_id: str) -> List[Dict[str, Any]]:
    """
    Put the item with `item_id` back to its version in `before`, leaving every
    other item as it is now. An item absent from `before` is dropped; a removed
    item goes back after its nearest earlier neighbour that is still listed.
    """
    index = next((i for i, item in enumerate(before) if item["id"] == item_id), None)
    if index is None:
        return [item for item in items if item["id"] != item_id]
    original = before[index]
    if any(item["id"] == item_id for item in items):
        return [original if item["id"] == item_id else item for item in items]
    current = [item["id"] for item in items]
    position = 0
    for earlier in reversed(before[:index]):
        if earlier["id"] in current:
            position = current.index(earlier["id"]) + 1
            break
    return items[:position] + [original] + items[position:]


Notifier = Callable[[Notification], None]


# PUBLIC_INTERFACE
class MutationCoordinator:
    """
    Applies todo and note mutations optimistically to a `CacheStore`.

    Public methods return a tagged `Success(value)` or `Failure(error)`; they
    never raise for remote failures. The remote call is shielded: if the
    awaiting caller is cancelled, the mutation still completes and its
    SUCCESS/FAILED cache writes still happen.
    """

    def __init__(
        self,
        store: CacheStore,
        remote: RemoteApi,
        current_user: Optional[Dict[str, Any]] = None,
        notify: Optional[Notifier] = None,
    ) -> None:
        self._store = store
        self._remote = remote
        self._current_user = current_user
        self._notify = notify
        self._pending: Dict[str, List[Mutation]] = {}
        self._holders: Dict[CacheKey, List[Mutation]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self.history: List[Mutation] = []

    # helpers

    def _list_keys(self) -> List[CacheKey]:
        return self._store.keys(TODOS)

    def _list_keys_containing(self, todo_id: str) -> List[CacheKey]:
        keys = []
        for key in self._list_keys():
            page = self._store.read(key)
            if page and any(item["id"] == todo_id for item in page["items"]):
                keys.append(key)
        return keys

    def _snapshot(self, mutation: Mutation, keys: Iterable[CacheKey]) -> None:
        for key in keys:
            if key in mutation.snapshots:
                continue
            mutation.snapshots[key] = self._store.snapshot(key)
            holders = self._holders.setdefault(key, [])
            if holders:
                mutation.shared.add(key)
                for other in holders:
                    other.shared.add(key)
            holders.append(mutation)

    def _update_list_items(
        self,
        keys: Iterable[CacheKey],
        change: Callable[[List[Dict[str, Any]]], List[Dict[str, Any]]],
    ) -> None:
        for key in keys:
            page = self._store.read(key)
            if page is None:
                continue
            page["items"] = change(page["items"])
            self._store.write(key, page)

    def _update_entity(self, key: CacheKey, change: Callable[[Dict[str, Any]], Dict[str, Any]]) -> None:
        value = self._store.read(key)
        if value is not None:
            self._store.write(key, change(value))

    def _cached_users(self) -> Optional[List[Dict[str, Any]]]:
        return self._store.read(USERS_KEY)

    def _emit(self, title: str, description: str, variant: str = "default") -> None:
        if self._notify is not None:
            self._notify(Notification(title, description, variant))

    def _begin(self, kind: MutationKind, entity_id: str, item_id: Optional[str] = None) -> Mutation:
        mutation = Mutation(kind=kind, entity_id=entity_id, item_id=item_id or entity_id)
        in_flight = self._pending.setdefault(entity_id, [])
        if in_flight:
            logger.info(
                "%s on %s starts while %d mutation(s) are pending; it snapshots their optimistic state",
                kind.value, entity_id, len(in_flight),
            )
        in_flight.append(mutation)
        self.history.append(mutation)
        return mutation

    def _finish(self, mutation: Mutation) -> None:
        in_flight = self._pending.get(mutation.entity_id, [])
        if mutation in in_flight:
            in_flight.remove(mutation)
        if not in_flight:
            self._pending.pop(mutation.entity_id, None)
        for key in mutation.snapshots:
            holders = self._holders.get(key, [])
            if mutation in holders:
                holders.remove(mutation)
            if not holders:
                self._holders.pop(key, None)

    def pending(self, entity_id: str) -> List[Mutation]:
        return list(self._pending.get(entity_id, []))

    def _undo_in_list(self, mutation: Mutation, key: CacheKey, token: SnapshotToken) -> None:
        # other mutations wrote this list meanwhile; revert only this mutation's item
        before = self._store.snapshot_value(token)
        self._store.release(token)
        page = self._store.read(key)
        if before is None or page is None:
            self._store.invalidate(key)
            return
        stale = self._store.is_stale(key)
        page["items"] = _undo_item(page["items"], before["items"], mutation.item_id)
        self._store.write(key, page)
        if stale:
            self._store.invalidate(key)
        logger.debug("Reverted %s in shared list %s", mutation.item_id, key)

    def _rollback(self, mutation: Mutation) -> None:
        tokens = mutation.snapshots
        if all(self._store.has_snapshot(token) for token in tokens.values()):
            for key, token in tokens.items():
                if key.kind == TODOS and key in mutation.shared:
                    self._undo_in_list(mutation, key, token)
                else:
                    self._store.restore(key, token)
            logger.warning("Rolled back %s on %s (%d key(s))", mutation.kind.value, mutation.entity_id, len(tokens))
            return

        # a snapshot vanished; force every affected key to be refetched instead of keeping optimistic data
        logger.error(
            "Lost snapshot while rolling back %s on %s; evicting %d key(s)",
            mutation.kind.value, mutation.entity_id, len(tokens),
        )
        for key, token in tokens.items():
            self._store.invalidate(key)
            self._store.release(token)
            self._store.evict(key)

    async def _execute(
        self,
        mutation: Mutation,
        payload: MutationPayload,
        reconcile: Callable[[Dict[str, Any]], None],
        success_message: Notification,
    ) -> MutationResult:
        try:
            value = await self._remote.submit(mutation.kind, payload)
        except TaskboardError as exc:
            mutation.fail(exc)
            self._rollback(mutation)
            self._finish(mutation)
            self._emit("Error", exc.message, "destructive")
            return Failure(exc)
        except Exception as exc:
            mutation.fail(exc)
            self._rollback(mutation)
            self._finish(mutation)
            raise

        mutation.succeed(value)
        reconcile(value)
        for key, token in mutation.snapshots.items():
            self._store.release(token)
            if key.kind == TODOS:
                self._store.invalidate(key)
        self._finish(mutation)
        logger.debug("%s on %s succeeded", mutation.kind.value, mutation.entity_id)
        if self._notify is not None:
            self._notify(success_message)
        return Success(value)

    async def _submit(self, coro) -> MutationResult:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for every submitted mutation, including ones whose caller went away."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # mutations

    async def create_todo(self, draft: TodoCreate) -> MutationResult:
        """
        Insert a placeholder at the front of every cached todo list, then swap
        in the server's todo (with its real id) once it answers.
        """
        placeholder_id = temp_id()
        users = self._cached_users()
        description = draft.description or ""
        placeholder = {
            "id": placeholder_id,
            "title": draft.title,
            "description": description,
            "priority": draft.priority.value,
            "user_id": self._current_user["id"] if self._current_user else None,
            "created_at": None,
            "updated_at": None,
            "tags": _tentative_tags(draft.tags or []),
            "notes": [],
            "mentions": _tentative_mentions(placeholder_id, description, users) if users is not None else [],
        }

        mutation = self._begin(MutationKind.CREATE_TODO, placeholder_id)
        keys = self._list_keys()
        self._snapshot(mutation, keys)
        self._update_list_items(keys, lambda items: [placeholder] + items)

        def reconcile(todo: Dict[str, Any]) -> None:
            self._update_list_items(keys, lambda items: _replace_by_id(items, placeholder_id, todo))
            self._store.write(todo_key(todo["id"]), todo)

        return await self._submit(
            self._execute(
                mutation,
                draft,
                reconcile,
                Notification("Todo created", "Your todo has been created successfully."),
            )
        )

    async def update_todo(self, todo_id: str, patch: TodoUpdate) -> MutationResult:
        """Merge `patch` into every cached copy of the todo, then replace them with the server's version."""
        users = self._cached_users()
        mutation = self._begin(MutationKind.UPDATE_TODO, todo_id)
        list_keys = self._list_keys_containing(todo_id)
        entity = todo_key(todo_id)
        self._snapshot(mutation, list_keys)
        if self._store.contains(entity):
            self._snapshot(mutation, [entity])

        def patched(item: Dict[str, Any]) -> Dict[str, Any]:
            return apply_patch(item, patch, users) if item["id"] == todo_id else item

        self._update_list_items(list_keys, lambda items: [patched(i) for i in items])
        self._update_entity(entity, patched)

        def reconcile(todo: Dict[str, Any]) -> None:
            self._update_list_items(list_keys, lambda items: _replace_by_id(items, todo_id, todo))
            if self._store.contains(entity):
                self._store.write(entity, todo)

        return await self._submit(
            self._execute(
                mutation,
                UpdateTodoRequest(todo_id, patch),
                reconcile,
                Notification("Todo updated", "Your todo has been updated successfully."),
            )
        )

    async def delete_todo(self, todo_id: str) -> MutationResult:
        """Hide the todo everywhere right away; a failure puts it back where it was."""
        mutation = self._begin(MutationKind.DELETE_TODO, todo_id)
        list_keys = self._list_keys_containing(todo_id)
        entity_keys = [k for k in (todo_key(todo_id), notes_key(todo_id)) if self._store.contains(k)]
        self._snapshot(mutation, list_keys + entity_keys)

        self._update_list_items(list_keys, lambda items: [i for i in items if i["id"] != todo_id])
        for key in entity_keys:
            self._store.discard(key)

        return await self._submit(
            self._execute(
                mutation,
                todo_id,
                lambda _: None,
                Notification("Todo deleted", "Your todo has been deleted successfully."),
            )
        )

    async def create_note(self, draft: NoteCreate) -> MutationResult:
        """
        Prepend a placeholder note to the todo's notes list and append it to
        the todo's notes wherever the todo is cached.
        """
        todo_id = draft.todo_id
        placeholder_id = temp_id()
        placeholder = {
            "id": placeholder_id,
            "content": draft.content,
            "todo_id": todo_id,
            "user_id": self._current_user["id"] if self._current_user else None,
            "created_at": None,
            "user": dict(self._current_user) if self._current_user else None,
        }

        mutation = self._begin(MutationKind.CREATE_NOTE, placeholder_id, item_id=todo_id)
        notes = notes_key(todo_id)
        entity = todo_key(todo_id)
        list_keys = self._list_keys_containing(todo_id)
        self._snapshot(mutation, [notes] + list_keys)
        if self._store.contains(entity):
            self._snapshot(mutation, [entity])

        def with_note(todo: Dict[str, Any], note: Dict[str, Any], old_id: Optional[str] = None) -> Dict[str, Any]:
            if todo["id"] != todo_id:
                return todo
            out = dict(todo)
            current = list(todo.get("notes") or [])
            out["notes"] = _replace_by_id(current, old_id, note) if old_id else current + [note]
            return out

        self._store.write(notes, [placeholder] + (self._store.read(notes) or []))
        self._update_list_items(list_keys, lambda items: [with_note(i, placeholder) for i in items])
        self._update_entity(entity, lambda t: with_note(t, placeholder))

        def reconcile(note: Dict[str, Any]) -> None:
            self._store.write(notes, _replace_by_id(self._store.read(notes) or [], placeholder_id, note))
            self._update_list_items(list_keys, lambda items: [with_note(i, note, placeholder_id) for i in items])
            self._update_entity(entity, lambda t: with_note(t, note, placeholder_id))
            self._store.invalidate(notes)

        return await self._submit(
            self._execute(
                mutation,
                draft,
                reconcile,
                Notification("Note added", "Your note has been added successfully."),
            )
        )
