"""Command template rendering.

Templates are shell scripts with `{{ name }}` placeholders. Rendering is a
pure function: every placeholder must be bound, every value is shell-quoted,
and nothing here touches the network.
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass
from typing import Any, List, Mapping, Tuple

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


@dataclass(frozen=True)
class MissingBinding:
    """A placeholder that had no value in the binding set."""
    name: str

    def __str__(self) -> str:
        return f"MissingBinding({self.name!r})"


class RenderError(ValueError):
    """Raised when a template cannot be fully rendered.

    This is a configuration defect and is never retried.
    """

    def __init__(self, template_name: str, missing: List[MissingBinding]) -> None:
        self.template_name = template_name
        self.missing = missing
        names = ", ".join(m.name for m in missing)
        super().__init__(f"Template '{template_name}' has unbound placeholders: {names}")

    @property
    def reason(self) -> MissingBinding:
        """The first unbound placeholder, in template order."""
        return self.missing[0]


@dataclass(frozen=True)
class CommandTemplate:
    """A named script body containing substitution placeholders."""
    name: str
    body: str

    @property
    def placeholders(self) -> Tuple[str, ...]:
        seen: List[str] = []
        for match in _PLACEHOLDER.finditer(self.body):
            if match.group(1) not in seen:
                seen.append(match.group(1))
        return tuple(seen)


@dataclass(frozen=True)
class RenderedCommand:
    """Immutable script produced by rendering a template."""
    template_name: str
    script: str

    @property
    def encoded(self) -> bytes:
        return self.script.encode("utf-8")


def _quote(value: Any) -> str:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return shlex.quote(str(value))


def check_bindings(template: CommandTemplate, bindings: Mapping[str, Any]) -> None:
    """Raise RenderError unless every placeholder of `template` is bound."""
    missing = [MissingBinding(name) for name in template.placeholders if name not in bindings]
    if missing:
        raise RenderError(template.name, missing)


def render(template: CommandTemplate, bindings: Mapping[str, Any]) -> RenderedCommand:
    """Substitute `bindings` into `template`.

    Extra bindings are ignored. A binding whose value is None counts as
    bound and renders as an empty string.
    """
    check_bindings(template, bindings)

    def _substitute(match: "re.Match[str]") -> str:
        value = bindings[match.group(1)]
        return _quote("" if value is None else value)

    return RenderedCommand(template.name, _PLACEHOLDER.sub(_substitute, template.body))
