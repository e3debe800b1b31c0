"""
Client-side engine: a keyed cache of server data, read-through list queries
and optimistic mutations with rollback.
"""
from .cache import CacheKey, CacheStore, SnapshotToken
from .coordinator import Failure, Mutation, MutationCoordinator, MutationState, Notification, Success
from .queries import ListQueryEngine, TodoListParams
from .remote import HttpRemoteApi, MutationKind, RemoteApi, UpdateTodoRequest

__all__ = [
    "CacheKey",
    "CacheStore",
    "SnapshotToken",
    "Failure",
    "Mutation",
    "MutationCoordinator",
    "MutationState",
    "Notification",
    "Success",
    "ListQueryEngine",
    "TodoListParams",
    "HttpRemoteApi",
    "MutationKind",
    "RemoteApi",
    "UpdateTodoRequest",
]
