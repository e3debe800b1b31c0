"""
Process-local keyed store of query results.

The store is the only owner of cached values: everything going in or out is
deep-copied, so callers can never mutate an entry in place. Writes replace a
whole entry; there is no partial update.
"""
from __future__ import annotations

import copy
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from ..errors import SnapshotMissingError

logger = logging.getLogger(__name__)

TODOS = "todos"
TODO = "todo"
NOTES = "notes"
USERS = "users"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class CacheKey:
    """
    Composite cache address: an entity kind plus serialized parameters.

    List queries serialize their filter/sort/page parameters, single entities
    use their id, so two requests with identical parameters share one entry.
    """

    kind: str
    params: str = ""

    @classmethod
    def for_query(cls, kind: str, params: Mapping[str, Any]) -> "CacheKey":
        return cls(kind, json.dumps(dict(params), sort_keys=True, separators=(",", ":"), default=str))

    @classmethod
    def for_entity(cls, kind: str, entity_id: str) -> "CacheKey":
        return cls(kind, str(entity_id))

    def __str__(self) -> str:
        return f"{self.kind}:{self.params}" if self.params else self.kind


@dataclass
class CacheEntry:
    value: Any
    stale: bool = False


@dataclass(frozen=True)
class SnapshotToken:
    """Opaque handle returned by `CacheStore.snapshot`."""

    key: CacheKey
    serial: int


@dataclass(frozen=True)
class _Saved:
    present: bool
    value: Any = None
    stale: bool = False


InvalidationListener = Callable[[CacheKey], None]


class CacheStore:
    """
    Keyed cache of lists and single entities with snapshot/restore.

    Components receive the store through their constructor; there is no
    global instance.
    """

    def __init__(self) -> None:
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._snapshots: Dict[SnapshotToken, _Saved] = {}
        self._serials = itertools.count(1)
        self._listeners: List[InvalidationListener] = []

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def contains(self, key: CacheKey) -> bool:
        return key in self._entries

    def keys(self, kind: Optional[str] = None) -> List[CacheKey]:
        """Keys currently held, optionally restricted to one kind, in insertion order."""
        return [k for k in self._entries if kind is None or k.kind == kind]

    def read(self, key: CacheKey) -> Optional[Any]:
        """Return a copy of the cached value, or None when the key is absent."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return copy.deepcopy(entry.value)

    def is_stale(self, key: CacheKey) -> bool:
        """True when the entry was invalidated since its last write. Absent keys are not stale."""
        entry = self._entries.get(key)
        return entry is not None and entry.stale

    def write(self, key: CacheKey, value: Any) -> None:
        """Replace the entry for `key` with `value`, marking it fresh."""
        self._entries[key] = CacheEntry(copy.deepcopy(value))

    def invalidate(self, key: CacheKey) -> None:
        """Mark the entry stale so the next read through a query engine refetches it."""
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.stale = True
        for listener in list(self._listeners):
            listener(key)

    def invalidate_kind(self, kind: str) -> None:
        for key in self.keys(kind):
            self.invalidate(key)

    def discard(self, key: CacheKey) -> None:
        """Remove the value for `key`. Outstanding snapshots stay restorable."""
        self._entries.pop(key, None)

    def evict(self, key: CacheKey) -> None:
        """Remove the value for `key` together with every outstanding snapshot of it."""
        self._entries.pop(key, None)
        dropped = [t for t in self._snapshots if t.key == key]
        for token in dropped:
            del self._snapshots[token]
        logger.debug("Evicted %s (%d snapshot(s) dropped)", key, len(dropped))

    def clear(self) -> None:
        self._entries.clear()
        self._snapshots.clear()

    # snapshots

    def snapshot(self, key: CacheKey) -> SnapshotToken:
        """Capture the current value (or absence) of `key` for a later `restore`."""
        token = SnapshotToken(key, next(self._serials))
        entry = self._entries.get(key)
        if entry is None:
            self._snapshots[token] = _Saved(present=False)
        else:
            self._snapshots[token] = _Saved(present=True, value=copy.deepcopy(entry.value), stale=entry.stale)
        return token

    def has_snapshot(self, token: SnapshotToken) -> bool:
        return token in self._snapshots

    def snapshot_value(self, token: SnapshotToken) -> Optional[Any]:
        """Return a copy of the value captured by `token` (None for an absent key) without consuming it."""
        saved = self._snapshots.get(token)
        if saved is None:
            raise SnapshotMissingError(f"no snapshot {token.serial} for {token.key}")
        return copy.deepcopy(saved.value) if saved.present else None

    def restore(self, key: CacheKey, token: SnapshotToken) -> None:
        """
        Put `key` back to the state captured by `token`, including absence.

        Raises:
            SnapshotMissingError: the token is unknown, was already used, or
                its key was evicted after the snapshot was taken.
        """
        if token.key != key:
            raise SnapshotMissingError(f"snapshot {token.serial} was taken for {token.key}, not {key}")
        saved = self._snapshots.pop(token, None)
        if saved is None:
            raise SnapshotMissingError(f"no snapshot {token.serial} for {key}")
        if saved.present:
            self._entries[key] = CacheEntry(copy.deepcopy(saved.value), saved.stale)
        else:
            self._entries.pop(key, None)

    def release(self, token: SnapshotToken) -> None:
        """Forget a snapshot that is no longer needed."""
        self._snapshots.pop(token, None)

    # listeners

    def subscribe(self, listener: InvalidationListener) -> Callable[[], None]:
        """Call `listener(key)` on every invalidation. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def __iter__(self) -> Iterator[CacheKey]:
        return iter(list(self._entries))
