"""Fleet inventory and target resolution."""

from .inventory import FleetInventory, ProbingInventory, StaticInventory
from .probe import tcp_probe
from .resolver import AmbiguousSelectorError, NotFoundError, ResolutionError, TargetResolver

__all__ = [
    "FleetInventory",
    "ProbingInventory",
    "StaticInventory",
    "tcp_probe",
    "AmbiguousSelectorError",
    "NotFoundError",
    "ResolutionError",
    "TargetResolver",
]
