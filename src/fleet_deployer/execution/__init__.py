"""Remote execution clients."""

from .base import (
    TARGET_UNREACHABLE,
    DispatchError,
    ExecutionClient,
    UnknownHandleError,
    truncate_output,
)

__all__ = [
    "TARGET_UNREACHABLE",
    "DispatchError",
    "ExecutionClient",
    "UnknownHandleError",
    "truncate_output",
]
