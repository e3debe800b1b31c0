from __future__ import annotations

from typing import Any, Optional


class TaskboardError(Exception):
    """Base class for errors raised by the taskboard server and client engine."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# PUBLIC_INTERFACE
class ValidationError(TaskboardError):
    """
    Malformed input. Shown to the user inline and never retried automatically.

    `details` carries the field-level error payload when the server sent one.
    """

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.details = details


# PUBLIC_INTERFACE
class NotFoundError(TaskboardError):
    """A referenced todo or note does not exist."""


# PUBLIC_INTERFACE
class RemoteError(TaskboardError):
    """
    Network or server failure during a mutation or fetch.

    Transient from the user's point of view: the caller may retry by hand.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SnapshotMissingError(TaskboardError):
    """A cache restore was asked for a snapshot the store no longer holds."""


class InvalidTransitionError(TaskboardError):
    """A mutation that already reached a terminal state was transitioned again."""
