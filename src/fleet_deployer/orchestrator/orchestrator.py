"""Deployment orchestrator: resolves a target and drives the stage pipeline."""

from __future__ import annotations

import logging
import re
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, TYPE_CHECKING

from ..config import PipelineConfig
from ..fleet import AmbiguousSelectorError, NotFoundError, ResolutionError, TargetResolver
from ..models import (
    CommandOutcome,
    FleetSelector,
    OutcomeStatus,
    PipelineRun,
    Stage,
    StageRecord,
    Target,
    Verdict,
)
from ..templates import RenderError, check_bindings
from .stage_runner import StageRunner
from .stages import default_stages

if TYPE_CHECKING:
    from ..execution import ExecutionClient
    from ..reports import RunReportWriter

logger = logging.getLogger(__name__)

_LABEL_KEY = re.compile(r"[^A-Za-z0-9_]")


def _now() -> str:
    return datetime.now().isoformat()


class DeploymentOrchestrator:
    """
    Deployment orchestrator

    Runs the stages strictly in order against one resolved target and stops
    at the first stage that does not pass. No rollback is attempted; a
    rollback is just another deploy with the previous image reference.
    """

    def __init__(
        self,
        resolver: TargetResolver,
        client: "ExecutionClient",
        *,
        pipeline: Optional[PipelineConfig] = None,
        stages: Optional[Sequence[Stage]] = None,
        report_writer: Optional["RunReportWriter"] = None,
        progress_interval: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.resolver = resolver
        self.client = client
        self.pipeline = pipeline or PipelineConfig()
        self.stages: List[Stage] = list(stages) if stages is not None else default_stages(self.pipeline)
        self.report_writer = report_writer
        self.stage_runner = StageRunner(client, progress_interval=progress_interval)
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def deploy(
        self,
        selector: FleetSelector,
        image_ref: str,
        cancel_event: Optional[threading.Event] = None,
        *,
        trigger: str = "deploy",
    ) -> PipelineRun:
        """Deploy `image_ref` to the target chosen by `selector`.

        `trigger` is recorded in the report; rollbacks pass "rollback".
        """
        run_id = uuid.uuid4().hex[:12]
        started_at = _now()
        self._log_banner(selector, image_ref, run_id)

        try:
            target = self._with_resolution_retry(lambda: self.resolver.resolve(selector), cancel_event)
        except ResolutionError as exc:
            logger.error("❌ Target resolution failed: %s", exc)
            run = PipelineRun(
                run_id=run_id,
                selector=selector,
                image_ref=image_ref,
                verdict=Verdict.target_not_found(str(exc)),
                started_at=started_at,
                finished_at=_now(),
                trigger=trigger,
            )
            return self._finish(run)

        return self._finish(
            self._run_pipeline(selector, image_ref, target, run_id, started_at, cancel_event, trigger)
        )

    def deploy_fleet(
        self,
        selector: FleetSelector,
        image_ref: str,
        *,
        limit: Optional[int] = None,
        max_workers: int = 4,
        cancel_event: Optional[threading.Event] = None,
        trigger: str = "deploy",
    ) -> List[PipelineRun]:
        """Deploy to every eligible target (up to `limit`), one independent pipeline each."""
        try:
            targets = self._with_resolution_retry(
                lambda: self.resolver.resolve_all(selector, limit), cancel_event
            )
        except ResolutionError as exc:
            logger.error("❌ Target resolution failed: %s", exc)
            run = PipelineRun(
                run_id=uuid.uuid4().hex[:12],
                selector=selector,
                image_ref=image_ref,
                verdict=Verdict.target_not_found(str(exc)),
                started_at=_now(),
                finished_at=_now(),
                trigger=trigger,
            )
            return [self._finish(run)]

        logger.info("🚀 Fleet rollout of %s to %d target(s)", image_ref, len(targets))

        def _one(target: Target) -> PipelineRun:
            run_id = uuid.uuid4().hex[:12]
            return self._finish(
                self._run_pipeline(selector, image_ref, target, run_id, _now(), cancel_event, trigger)
            )

        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            return list(executor.map(_one, targets))

    def build_bindings(self, target: Target, image_ref: str, run_id: str) -> Dict[str, Any]:
        """Bindings for one run against one target. Never cached."""
        cfg = self.pipeline
        bindings: Dict[str, Any] = dict(cfg.extra_bindings)
        for key, value in target.labels.items():
            bindings[f"label_{_LABEL_KEY.sub('_', key)}"] = value
        bindings.update(
            {
                "image_ref": image_ref,
                "deploy_path": cfg.deploy_path,
                "container_name": cfg.container_name,
                "host_port": cfg.host_port,
                "container_port": cfg.container_port,
                "health_path": cfg.health_path,
                "health_attempts": cfg.health_attempts,
                "health_interval": cfg.health_interval,
                "health_request_timeout": cfg.health_request_timeout,
                "health_window": cfg.health_window,
                "credentials_ref": cfg.credentials_ref,
                "run_id": run_id,
                "target_id": target.id,
            }
        )
        return bindings

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _with_resolution_retry(self, resolve: Callable[[], Any], cancel_event: Optional[threading.Event]):
        attempts = max(1, self.pipeline.resolve_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return resolve()
            except AmbiguousSelectorError:
                raise
            except NotFoundError as exc:
                cancelled = cancel_event is not None and cancel_event.is_set()
                if attempt == attempts or cancelled:
                    raise
                delay = self.pipeline.resolve_backoff * (2 ** (attempt - 1))
                logger.warning(
                    "⚠️ Resolution attempt %d/%d failed (%s); retrying in %.1fs",
                    attempt, attempts, exc, delay,
                )
                self._sleep(delay)

    def _run_pipeline(
        self,
        selector: FleetSelector,
        image_ref: str,
        target: Target,
        run_id: str,
        started_at: str,
        cancel_event: Optional[threading.Event],
        trigger: str = "deploy",
    ) -> PipelineRun:
        logger.info("🎯 Target: %s (%s)", target.id, target.host)
        bindings = self.build_bindings(target, image_ref, run_id)

        def _result(verdict: Verdict, records: List[StageRecord]) -> PipelineRun:
            return PipelineRun(
                run_id=run_id,
                selector=selector,
                image_ref=image_ref,
                verdict=verdict,
                target=target,
                records=tuple(records),
                started_at=started_at,
                finished_at=_now(),
                trigger=trigger,
            )

        # Pre-flight: a missing binding anywhere aborts before any remote call.
        try:
            for stage in self.stages:
                check_bindings(stage.template, bindings)
        except RenderError as exc:
            logger.error("❌ Configuration defect, nothing dispatched: %s", exc)
            return _result(Verdict.render_failed(str(exc)), [])

        records: List[StageRecord] = []
        total = len(self.stages)
        for index, stage in enumerate(self.stages, 1):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("🛑 Run cancelled before stage %d (%s)", index, stage.name)
                return _result(Verdict.aborted_at(index, cancelled=True, detail="cancelled"), records)

            logger.info("📍 Stage %d/%d: %s", index, total, stage.name)
            stage_started = _now()
            outcome, attempts = self._run_stage(target, stage, bindings, cancel_event)
            records.append(
                StageRecord(
                    index=index,
                    stage_name=stage.name,
                    outcome=outcome,
                    attempts=attempts,
                    started_at=stage_started,
                    finished_at=_now(),
                )
            )

            if not outcome.ok:
                logger.error(
                    "   ❌ %s: %s%s",
                    stage.name, outcome.status.value, f" ({outcome.detail})" if outcome.detail else "",
                )
                return _result(Verdict.aborted_at(index, detail=outcome.detail or outcome.status.value), records)
            logger.info("   ✅ %s passed", stage.name)

        if cancel_event is not None and cancel_event.is_set():
            logger.info("🛑 Cancellation requested after the final stage; run already complete")
        logger.info("🎉 Deployment of %s to %s completed", image_ref, target.id)
        return _result(Verdict.completed(), records)

    def _run_stage(
        self,
        target: Target,
        stage: Stage,
        bindings: Dict[str, Any],
        cancel_event: Optional[threading.Event],
    ) -> "tuple[CommandOutcome, int]":
        attempts = 0
        while True:
            attempts += 1
            outcome = self.stage_runner.run(target, stage, bindings)
            if outcome.ok or outcome.status == OutcomeStatus.TARGET_UNREACHABLE:
                return outcome, attempts
            if attempts > stage.retries or (cancel_event is not None and cancel_event.is_set()):
                return outcome, attempts
            logger.warning(
                "   🔄 %s %s, retrying (%d/%d)",
                stage.name, outcome.status.value, attempts, stage.retries,
            )

    def _finish(self, run: PipelineRun) -> PipelineRun:
        logger.info("=" * 60)
        logger.info("Verdict: %s  (run %s)", run.verdict, run.run_id)
        logger.info("=" * 60)
        if self.report_writer is not None:
            path = self.report_writer.write(run)
            logger.info("📄 Run report saved to: %s", path)
        return run

    def _log_banner(self, selector: FleetSelector, image_ref: str, run_id: str) -> None:
        logger.info("=" * 60)
        logger.info("🚀 DEPLOYMENT RUN %s", run_id)
        logger.info("=" * 60)
        logger.info("Selector: %s (%s)", selector.describe() or "<empty>", selector.liveness.value)
        logger.info("Image:    %s", image_ref)
        logger.info("Stages:   %s", " -> ".join(s.name for s in self.stages))
