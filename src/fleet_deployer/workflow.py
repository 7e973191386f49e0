"""High-level workflow: builds the orchestrator from configuration."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from .config import AppConfig
from .execution import ExecutionClient
from .fleet import FleetInventory, ProbingInventory, StaticInventory, TargetResolver
from .local import LocalExecutionClient
from .models import FleetSelector, PipelineRun, Verdict
from .orchestrator import DeploymentOrchestrator
from .reports import RunReportWriter, current_image, previous_image
from .ssh import SSHCredentials, SSHExecutionClient
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DeploymentRequest:
    """User-provided deployment request captured from the CLI."""

    selector: FleetSelector
    image_ref: str
    fleet: bool = False
    limit: Optional[int] = None
    max_workers: int = 4
    trigger: str = "deploy"


class DeploymentWorkflow:
    """Wires inventory, execution client and orchestrator together for one run."""

    def __init__(
        self,
        config: AppConfig,
        *,
        inventory: Optional[FleetInventory] = None,
        client_factory: Optional[Callable[[], ExecutionClient]] = None,
    ) -> None:
        self.config = config
        self.inventory = inventory or self.build_inventory()
        self._client_factory = client_factory or self.build_client

    def build_inventory(self) -> FleetInventory:
        inventory: FleetInventory = StaticInventory.from_dicts(self.config.fleet.targets)
        if self.config.fleet.probe_liveness:
            inventory = ProbingInventory(
                inventory,
                default_port=self.config.ssh.port,
                timeout=self.config.fleet.probe_timeout,
            )
        return inventory

    def build_credentials(self) -> SSHCredentials:
        return SSHCredentials.from_config(self.config.ssh)

    def build_client(self) -> ExecutionClient:
        pipeline = self.config.pipeline
        if self.config.fleet.execution == "local":
            return LocalExecutionClient(max_output_bytes=pipeline.max_output_bytes)
        if self.config.fleet.execution != "ssh":
            raise ValueError(f"Unsupported execution mode: {self.config.fleet.execution}")
        return SSHExecutionClient(
            self.build_credentials(),
            remote_dir=pipeline.remote_dir,
            poll_interval=pipeline.poll_interval,
            max_output_bytes=pipeline.max_output_bytes,
        )

    def _orchestrator(self, client: ExecutionClient) -> DeploymentOrchestrator:
        writer = RunReportWriter(self.config.reports.runs_dir) if self.config.reports.enabled else None
        return DeploymentOrchestrator(
            TargetResolver(self.inventory),
            client,
            pipeline=self.config.pipeline,
            report_writer=writer,
        )

    def run_deploy(
        self,
        request: DeploymentRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[PipelineRun]:
        """Run the pipeline; one PipelineRun per target touched."""
        logger.info("Preparing deployment of %s to [%s]", request.image_ref, request.selector.describe())
        # Credentials are acquired once here and shared read-only by the run.
        with self._client_factory() as client:
            orchestrator = self._orchestrator(client)
            if request.fleet:
                return orchestrator.deploy_fleet(
                    request.selector,
                    request.image_ref,
                    limit=request.limit,
                    max_workers=request.max_workers,
                    cancel_event=cancel_event,
                    trigger=request.trigger,
                )
            return [
                orchestrator.deploy(request.selector, request.image_ref, cancel_event, trigger=request.trigger)
            ]

    def rollback_image(self, selector: FleetSelector) -> Optional[str]:
        """Image below the current one on the deployment stack, if any."""
        runs_dir = self.config.reports.runs_dir
        current = current_image(runs_dir, selector)
        if current is None:
            return None
        return previous_image(runs_dir, selector, current=current)

    def run_rollback(
        self,
        request: DeploymentRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[PipelineRun]:
        image = request.image_ref or self.rollback_image(request.selector)
        if not image:
            logger.error("No previous completed image recorded for [%s]", request.selector.describe())
            return []
        logger.info("⏪ Rolling back [%s] to %s", request.selector.describe(), image)
        return self.run_deploy(
            DeploymentRequest(
                selector=request.selector,
                image_ref=image,
                fleet=request.fleet,
                limit=request.limit,
                max_workers=request.max_workers,
                trigger="rollback",
            ),
            cancel_event,
        )


def summarize(runs: List[PipelineRun]) -> Verdict:
    """First non-completed verdict, or Completed if every run completed."""
    for run in runs:
        if not run.succeeded:
            return run.verdict
    return Verdict.completed()
