"""Command template engine and the built-in stage scripts."""

from .engine import (
    CommandTemplate,
    MissingBinding,
    RenderedCommand,
    RenderError,
    check_bindings,
    render,
)
from .builtin import (
    ARTIFACT_PULL,
    ARTIFACT_PULL_MARKER,
    BUILTIN_TEMPLATES,
    DEPENDENCY_CHECK,
    DEPENDENCY_CHECK_MARKER,
    DEPLOY_SWAP,
    DEPLOY_SWAP_MARKER,
    HEALTH_CHECK,
    HEALTH_CHECK_MARKER,
    HEALTH_CHECK_TIMEOUT_EXIT,
)

__all__ = [
    "CommandTemplate",
    "MissingBinding",
    "RenderedCommand",
    "RenderError",
    "check_bindings",
    "render",
    "ARTIFACT_PULL",
    "ARTIFACT_PULL_MARKER",
    "BUILTIN_TEMPLATES",
    "DEPENDENCY_CHECK",
    "DEPENDENCY_CHECK_MARKER",
    "DEPLOY_SWAP",
    "DEPLOY_SWAP_MARKER",
    "HEALTH_CHECK",
    "HEALTH_CHECK_MARKER",
    "HEALTH_CHECK_TIMEOUT_EXIT",
]
