"""Fleet query capabilities consumed by the target resolver."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..models import Liveness, Target
from .probe import tcp_probe

logger = logging.getLogger(__name__)


class FleetInventory(ABC):
    """Answers (label predicate, liveness filter) queries.

    Implementations must be idempotent and free of side effects.
    """

    @abstractmethod
    def query(
        self,
        labels: Mapping[str, str],
        liveness: Optional[Liveness] = None,
    ) -> List[Target]:
        """Return targets whose labels contain `labels` (and match `liveness` if given)."""


def _matches(target: Target, labels: Mapping[str, str], liveness: Optional[Liveness]) -> bool:
    if liveness is not None and target.liveness != liveness:
        return False
    return all(target.labels.get(k) == v for k, v in labels.items())


class StaticInventory(FleetInventory):
    """Inventory declared up front, e.g. in the configuration file."""

    def __init__(self, targets: Iterable[Target]) -> None:
        self._targets = tuple(targets)

    @classmethod
    def from_dicts(cls, entries: Iterable[Mapping[str, Any]]) -> "StaticInventory":
        targets = []
        for entry in entries:
            if not entry.get("id"):
                raise ValueError(f"Fleet entry without id: {dict(entry)}")
            targets.append(
                Target(
                    id=str(entry["id"]),
                    liveness=Liveness(entry.get("liveness", Liveness.UNKNOWN.value)),
                    labels={str(k): str(v) for k, v in (entry.get("labels") or {}).items()},
                    address=entry.get("address"),
                    port=entry.get("port"),
                )
            )
        return cls(targets)

    def query(
        self,
        labels: Mapping[str, str],
        liveness: Optional[Liveness] = None,
    ) -> List[Target]:
        return [t for t in self._targets if _matches(t, labels, liveness)]


class ProbingInventory(FleetInventory):
    """Re-checks liveness of every label match on each query.

    Results are never cached: two queries probe twice.
    """

    def __init__(
        self,
        inner: FleetInventory,
        *,
        default_port: int = 22,
        timeout: float = 3.0,
        probe: Callable[[str, int, float], bool] = tcp_probe,
    ) -> None:
        self.inner = inner
        self.default_port = default_port
        self.timeout = timeout
        self._probe = probe

    def query(
        self,
        labels: Mapping[str, str],
        liveness: Optional[Liveness] = None,
    ) -> List[Target]:
        probed: Dict[str, Target] = {}
        for target in self.inner.query(labels):
            port = target.port or self.default_port
            alive = self._probe(target.host, port, self.timeout)
            state = Liveness.ALIVE if alive else Liveness.UNREACHABLE
            logger.debug("Probed %s (%s:%s): %s", target.id, target.host, port, state.value)
            probed[target.id] = target.with_liveness(state)
        return [t for t in probed.values() if liveness is None or t.liveness == liveness]
