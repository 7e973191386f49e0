"""Shared fakes for orchestrator tests."""

from typing import Callable, Dict, List, Optional, Tuple

import pytest

from fleet_deployer.config import PipelineConfig
from fleet_deployer.execution import DispatchError, ExecutionClient, UnknownHandleError
from fleet_deployer.fleet import StaticInventory, TargetResolver
from fleet_deployer.models import CommandHandle, CommandOutcome, Liveness, Target
from fleet_deployer.orchestrator import DeploymentOrchestrator
from fleet_deployer.templates import (
    ARTIFACT_PULL_MARKER,
    DEPENDENCY_CHECK_MARKER,
    DEPLOY_SWAP_MARKER,
    HEALTH_CHECK_MARKER,
    RenderedCommand,
)

ALL_MARKERS = "\n".join(
    [DEPENDENCY_CHECK_MARKER, ARTIFACT_PULL_MARKER, DEPLOY_SWAP_MARKER, HEALTH_CHECK_MARKER]
)


class FakeExecutionClient(ExecutionClient):
    """Scripted execution client that records every dispatch.

    `outcomes` maps a template name to the outcomes returned by successive
    dispatches of that template; the last one repeats. Templates without a
    script succeed with every stage marker in the output.
    """

    def __init__(
        self,
        outcomes: Optional[Dict[str, List[CommandOutcome]]] = None,
        unreachable: Tuple[str, ...] = (),
        on_dispatch: Optional[Callable[[Target, RenderedCommand], None]] = None,
    ) -> None:
        super().__init__()
        self.outcomes = {k: list(v) for k, v in (outcomes or {}).items()}
        self.unreachable = set(unreachable)
        self.on_dispatch = on_dispatch
        self.dispatched: List[Tuple[str, str, str]] = []
        self.polls: List[Tuple[str, float]] = []
        self._pending: Dict[str, CommandOutcome] = {}
        self.closed = False

    @property
    def dispatched_templates(self) -> List[str]:
        return [name for _, name, _ in self.dispatched]

    def dispatch(self, target: Target, command: RenderedCommand) -> CommandHandle:
        if target.id in self.unreachable:
            raise DispatchError(target.id, "connection refused")
        self.dispatched.append((target.id, command.template_name, command.script))
        script = self.outcomes.get(command.template_name)
        if script:
            outcome = script.pop(0) if len(script) > 1 else script[0]
        else:
            outcome = CommandOutcome.succeeded(ALL_MARKERS)
        handle = self.new_handle(target)
        self._pending[handle.id] = outcome
        if self.on_dispatch:
            self.on_dispatch(target, command)
        return handle

    def _wait(self, handle: CommandHandle, timeout: float) -> CommandOutcome:
        self.polls.append((handle.id, timeout))
        if handle.id not in self._pending:
            raise UnknownHandleError(handle.id)
        return self._pending[handle.id]

    def close(self) -> None:
        self.closed = True


def make_target(target_id: str, liveness: Liveness = Liveness.ALIVE, **labels: str) -> Target:
    return Target(id=target_id, liveness=liveness, labels=labels or {"role": "web"})


@pytest.fixture
def web_fleet() -> StaticInventory:
    return StaticInventory(
        [
            make_target("web-02", role="web", env="prod"),
            make_target("web-01", role="web", env="prod"),
            make_target("web-03", Liveness.UNREACHABLE, role="web", env="prod"),
            make_target("db-01", role="db", env="prod"),
        ]
    )


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(resolve_attempts=3, resolve_backoff=0.5)


@pytest.fixture
def make_orchestrator(web_fleet, pipeline_config):
    sleeps: List[float] = []

    def _make(client: ExecutionClient, inventory=None, **kwargs) -> DeploymentOrchestrator:
        orchestrator = DeploymentOrchestrator(
            TargetResolver(inventory or web_fleet),
            client,
            pipeline=kwargs.pop("pipeline", pipeline_config),
            progress_interval=kwargs.pop("progress_interval", 0.0),
            sleep=sleeps.append,
            **kwargs,
        )
        orchestrator.sleeps = sleeps  # type: ignore[attr-defined]
        return orchestrator

    return _make
