"""Data models shared by the resolver, execution clients and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .templates import CommandTemplate


class Liveness(str, Enum):
    """Reachability state of a fleet instance."""
    ALIVE = "alive"
    UNREACHABLE = "unreachable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Target:
    """One addressable compute instance.

    Discovered per run and never persisted; `address` is what execution
    clients connect to and defaults to the id.
    """
    id: str
    liveness: Liveness = Liveness.UNKNOWN
    labels: Mapping[str, str] = field(default_factory=dict)
    address: Optional[str] = None
    port: Optional[int] = None

    @property
    def host(self) -> str:
        return self.address or self.id

    def with_liveness(self, liveness: Liveness) -> "Target":
        return replace(self, liveness=liveness)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "liveness": self.liveness.value,
            "labels": dict(self.labels),
            "address": self.host,
        }


@dataclass(frozen=True)
class FleetSelector:
    """Label-equality predicate combined with a required liveness state."""
    labels: Mapping[str, str] = field(default_factory=dict)
    liveness: Liveness = Liveness.ALIVE

    def matches_labels(self, target: Target) -> bool:
        return all(target.labels.get(k) == v for k, v in self.labels.items())

    def describe(self) -> str:
        return ",".join(f"{k}={v}" for k, v in sorted(self.labels.items()))

    @classmethod
    def parse(cls, expressions, liveness: Liveness = Liveness.ALIVE) -> "FleetSelector":
        """Build a selector from `key=value` strings (CLI form)."""
        labels: Dict[str, str] = {}
        for expr in expressions or []:
            key, sep, value = expr.partition("=")
            if not sep or not key.strip():
                raise ValueError(f"Invalid selector expression: {expr!r} (expected key=value)")
            labels[key.strip()] = value.strip()
        return cls(labels=labels, liveness=liveness)


class OutcomeStatus(str, Enum):
    """Terminal status of a dispatched command."""
    SUCCESS = "success"
    FAILURE = "failure"
    TIMED_OUT = "timed_out"
    TARGET_UNREACHABLE = "target_unreachable"


@dataclass(frozen=True)
class CommandHandle:
    """Correlates a poll with the dispatch that produced it."""
    id: str
    target_id: str
    dispatched_at: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass(frozen=True)
class CommandOutcome:
    """Terminal result of a dispatched command."""
    status: OutcomeStatus
    output: str = ""
    exit_code: Optional[int] = None
    truncated: bool = False
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @classmethod
    def succeeded(cls, output: str = "", exit_code: int = 0, truncated: bool = False) -> "CommandOutcome":
        return cls(OutcomeStatus.SUCCESS, output, exit_code, truncated)

    @classmethod
    def failed(
        cls,
        output: str = "",
        exit_code: Optional[int] = 1,
        truncated: bool = False,
        detail: Optional[str] = None,
    ) -> "CommandOutcome":
        return cls(OutcomeStatus.FAILURE, output, exit_code, truncated, detail)

    @classmethod
    def timed_out(cls, output: str = "", detail: Optional[str] = None) -> "CommandOutcome":
        return cls(OutcomeStatus.TIMED_OUT, output, None, False, detail)

    @classmethod
    def unreachable(cls, detail: Optional[str] = None) -> "CommandOutcome":
        return cls(OutcomeStatus.TARGET_UNREACHABLE, "", None, False, detail)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "exit_code": self.exit_code,
            "output": self.output,
            "truncated": self.truncated,
            "detail": self.detail,
        }


SuccessPredicate = Callable[[CommandOutcome], bool]


@dataclass(frozen=True)
class Stage:
    """A named unit of pipeline work: template, timeout and success predicate.

    A script that enforces its own deadline reports running out of time by
    exiting with `timeout_exit_code`; that exit is classified as TIMED_OUT.
    """
    name: str
    template: "CommandTemplate"
    timeout: float = 300.0
    success_marker: Optional[str] = None
    predicate: Optional[SuccessPredicate] = None
    retries: int = 0
    timeout_exit_code: Optional[int] = None

    def passed(self, outcome: CommandOutcome) -> bool:
        """Success status, the marker if one is set, then the custom predicate."""
        if not outcome.ok:
            return False
        if self.success_marker is not None and self.success_marker not in outcome.output:
            return False
        return self.predicate(outcome) if self.predicate is not None else True


@dataclass(frozen=True)
class StageRecord:
    """One (stage, outcome) entry of a pipeline run."""
    index: int
    stage_name: str
    outcome: CommandOutcome
    attempts: int = 1
    started_at: str = ""
    finished_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "stage_name": self.stage_name,
            "outcome": self.outcome.status.value,
            "exit_code": self.outcome.exit_code,
            "captured_output": self.outcome.output,
            "truncated": self.outcome.truncated,
            "detail": self.outcome.detail,
            "attempts": self.attempts,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class VerdictKind(str, Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"
    TARGET_NOT_FOUND = "target_not_found"
    RENDER_FAILED = "render_failed"


@dataclass(frozen=True)
class Verdict:
    """Final verdict of a pipeline run.

    `stage_index` is 1-based and only set for aborted runs.
    """
    kind: VerdictKind
    stage_index: Optional[int] = None
    cancelled: bool = False
    detail: Optional[str] = None

    @classmethod
    def completed(cls) -> "Verdict":
        return cls(VerdictKind.COMPLETED)

    @classmethod
    def aborted_at(cls, stage_index: int, cancelled: bool = False, detail: Optional[str] = None) -> "Verdict":
        return cls(VerdictKind.ABORTED, stage_index, cancelled, detail)

    @classmethod
    def target_not_found(cls, detail: Optional[str] = None) -> "Verdict":
        return cls(VerdictKind.TARGET_NOT_FOUND, detail=detail)

    @classmethod
    def render_failed(cls, detail: Optional[str] = None) -> "Verdict":
        return cls(VerdictKind.RENDER_FAILED, detail=detail)

    @property
    def attempted(self) -> bool:
        """False when the deployment could not even be attempted."""
        return self.kind in (VerdictKind.COMPLETED, VerdictKind.ABORTED)

    def __str__(self) -> str:
        if self.kind == VerdictKind.COMPLETED:
            return "Completed"
        if self.kind == VerdictKind.TARGET_NOT_FOUND:
            return "TargetNotFound"
        if self.kind == VerdictKind.RENDER_FAILED:
            return "RenderFailed"
        if self.cancelled:
            return f"AbortedAtStage({self.stage_index}, cancelled)"
        return f"AbortedAtStage({self.stage_index})"


@dataclass(frozen=True)
class PipelineRun:
    """Immutable record of one orchestration attempt against one target.

    `trigger` is "deploy" or "rollback"; rollback history depends on it.
    """
    run_id: str
    selector: FleetSelector
    image_ref: str
    verdict: Verdict
    target: Optional[Target] = None
    records: Tuple[StageRecord, ...] = ()
    started_at: str = ""
    finished_at: str = ""
    trigger: str = "deploy"

    @property
    def succeeded(self) -> bool:
        return self.verdict.kind == VerdictKind.COMPLETED

    @property
    def stage_names(self) -> Tuple[str, ...]:
        return tuple(r.stage_name for r in self.records)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize as the externally visible run report."""
        return {
            "version": "1.0",
            "run_id": self.run_id,
            "selector": dict(self.selector.labels),
            "selector_key": self.selector.describe(),
            "image_ref": self.image_ref,
            "trigger": self.trigger,
            "target": self.target.to_dict() if self.target else None,
            "verdict": str(self.verdict),
            "verdict_kind": self.verdict.kind.value,
            "attempted": self.verdict.attempted,
            "cancelled": self.verdict.cancelled,
            "detail": self.verdict.detail,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "stages": [r.to_dict() for r in self.records],
        }
