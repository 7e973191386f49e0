"""Stage runner: executes one pipeline stage against one target."""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Any, Mapping

from ..execution import TARGET_UNREACHABLE, DispatchError, ExecutionClient
from ..models import CommandOutcome, OutcomeStatus, Stage, Target
from ..templates import render

logger = logging.getLogger(__name__)


class StageRunner:
    """
    Stage runner

    render -> dispatch -> poll until terminal -> classify. The stage
    timeout bounds the whole wait; polling happens in slices of
    `progress_interval` so long stages report progress. No retries here:
    retry policy belongs to the orchestrator.
    """

    def __init__(self, client: ExecutionClient, progress_interval: float = 30.0) -> None:
        self.client = client
        self.progress_interval = progress_interval

    def run(self, target: Target, stage: Stage, bindings: Mapping[str, Any]) -> CommandOutcome:
        # Rendered fresh on every call; a RenderError propagates to the caller.
        rendered = render(stage.template, bindings)

        try:
            handle = self.client.dispatch(target, rendered)
        except DispatchError as exc:
            if exc.reason == TARGET_UNREACHABLE:
                logger.error("   ❌ %s: target %s unreachable: %s", stage.name, target.id, exc)
                return CommandOutcome.unreachable(str(exc))
            logger.error("   ❌ %s: dispatch rejected by %s: %s", stage.name, target.id, exc)
            return CommandOutcome.failed(exit_code=None, detail=str(exc))

        logger.info("   ▶ %s dispatched to %s (handle %s)", stage.name, target.id, handle.id)
        outcome = self._wait(stage, handle)
        return self.classify(stage, outcome)

    def _wait(self, stage: Stage, handle) -> CommandOutcome:
        started = time.monotonic()
        while True:
            remaining = stage.timeout - (time.monotonic() - started)
            slice_timeout = min(self.progress_interval, max(remaining, 0.0))
            outcome = self.client.poll(handle, slice_timeout)
            if outcome.status != OutcomeStatus.TIMED_OUT:
                return outcome
            elapsed = time.monotonic() - started
            if elapsed >= stage.timeout:
                logger.warning("   ⏱️ %s timed out after %.0fs", stage.name, elapsed)
                return outcome
            logger.info("   … %s still running (%.0fs elapsed)", stage.name, elapsed)

    @staticmethod
    def classify(stage: Stage, outcome: CommandOutcome) -> CommandOutcome:
        """Apply the stage's timeout exit code and success predicate to `outcome`."""
        if (
            outcome.status == OutcomeStatus.FAILURE
            and stage.timeout_exit_code is not None
            and outcome.exit_code == stage.timeout_exit_code
        ):
            return replace(
                outcome,
                status=OutcomeStatus.TIMED_OUT,
                detail=f"{stage.name} gave up after its own deadline (exit {outcome.exit_code})",
            )
        if outcome.ok and not stage.passed(outcome):
            if stage.success_marker and stage.success_marker not in outcome.output:
                detail = f"success marker {stage.success_marker} missing from output"
            else:
                detail = "success predicate rejected the output"
            return replace(outcome, status=OutcomeStatus.FAILURE, detail=detail)
        return outcome
