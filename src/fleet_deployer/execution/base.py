"""Asynchronous dispatch/poll contract for remote command execution."""

from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from typing import Dict

from ..models import CommandHandle, CommandOutcome, OutcomeStatus, Target
from ..templates import RenderedCommand

TARGET_UNREACHABLE = "target_unreachable"

_EXITED = (OutcomeStatus.SUCCESS, OutcomeStatus.FAILURE)


class DispatchError(RuntimeError):
    """Raised when a command cannot be sent to a target."""

    def __init__(self, target_id: str, message: str, reason: str = TARGET_UNREACHABLE) -> None:
        self.target_id = target_id
        self.reason = reason
        super().__init__(f"[{reason}] {target_id}: {message}")


class UnknownHandleError(KeyError):
    """Raised when polling a handle this client never issued."""


class ExecutionClient(ABC):
    """Sends rendered commands to targets and resolves their handles.

    `dispatch` must not block on command completion. `poll` may be called
    any number of times per handle. Once the command has exited (success or
    failure) the same outcome object is returned on every later poll; a
    timeout or a lost connection leaves the handle pollable.
    """

    def __init__(self) -> None:
        self._terminal: Dict[str, CommandOutcome] = {}
        self._lock = threading.Lock()

    @abstractmethod
    def dispatch(self, target: Target, command: RenderedCommand) -> CommandHandle:
        """Start `command` on `target` and return its handle."""

    @abstractmethod
    def _wait(self, handle: CommandHandle, timeout: float) -> CommandOutcome:
        """Block up to `timeout` seconds; return TIMED_OUT if still running."""

    def poll(self, handle: CommandHandle, timeout: float) -> CommandOutcome:
        with self._lock:
            cached = self._terminal.get(handle.id)
        if cached is not None:
            return cached
        outcome = self._wait(handle, max(0.0, float(timeout)))
        if outcome.status in _EXITED:
            with self._lock:
                outcome = self._terminal.setdefault(handle.id, outcome)
        return outcome

    def close(self) -> None:
        """Release any connections held by the client."""

    def __enter__(self) -> "ExecutionClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    @staticmethod
    def new_handle(target: Target) -> CommandHandle:
        return CommandHandle(id=uuid.uuid4().hex[:16], target_id=target.id)


def truncate_output(text: str, limit: int) -> "tuple[str, bool]":
    """Keep the tail of `text` within `limit` characters."""
    if limit <= 0 or len(text) <= limit:
        return text, False
    return text[-limit:], True
