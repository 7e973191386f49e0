"""Target resolution: selector -> exactly one (or a bounded set of) targets."""

from __future__ import annotations

import logging
from typing import List, Optional

from ..models import FleetSelector, Target
from .inventory import FleetInventory

logger = logging.getLogger(__name__)


class ResolutionError(LookupError):
    """Base class for selector resolution failures."""

    def __init__(self, selector: FleetSelector, message: str) -> None:
        self.selector = selector
        super().__init__(message)


class NotFoundError(ResolutionError):
    """No target matches the labels, or none is in the required state."""


class AmbiguousSelectorError(ResolutionError):
    """The selector has no label predicate and would match the whole fleet."""


class TargetResolver:
    """Resolves fleet selectors deterministically.

    When several targets qualify, the lexicographically smallest id wins so
    repeated runs against the same fleet state pick the same target. No
    retries happen here; callers own retry policy.
    """

    def __init__(self, inventory: FleetInventory) -> None:
        self.inventory = inventory

    def _candidates(self, selector: FleetSelector) -> List[Target]:
        if not selector.labels:
            raise AmbiguousSelectorError(selector, "Selector must name at least one label")

        matches = self.inventory.query(selector.labels)
        matches = [t for t in matches if selector.matches_labels(t)]
        if not matches:
            raise NotFoundError(selector, f"No target matches [{selector.describe()}]")

        eligible = sorted(
            (t for t in matches if t.liveness == selector.liveness),
            key=lambda t: t.id,
        )
        if not eligible:
            states = ", ".join(f"{t.id}={t.liveness.value}" for t in sorted(matches, key=lambda t: t.id))
            raise NotFoundError(
                selector,
                f"No target matching [{selector.describe()}] is {selector.liveness.value} ({states})",
            )
        return eligible

    def resolve(self, selector: FleetSelector) -> Target:
        eligible = self._candidates(selector)
        if len(eligible) > 1:
            logger.info(
                "Selector [%s] matched %d targets, choosing %s",
                selector.describe(), len(eligible), eligible[0].id,
            )
        return eligible[0]

    def resolve_all(self, selector: FleetSelector, limit: Optional[int] = None) -> List[Target]:
        """Return up to `limit` eligible targets sorted by id."""
        eligible = self._candidates(selector)
        if limit is not None and limit > 0:
            eligible = eligible[:limit]
        return eligible
