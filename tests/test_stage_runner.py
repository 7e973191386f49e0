"""Tests for the stage runner."""

import pytest

from fleet_deployer.execution import DispatchError, ExecutionClient
from fleet_deployer.models import CommandOutcome, OutcomeStatus, Stage
from fleet_deployer.orchestrator import StageRunner
from fleet_deployer.templates import CommandTemplate, RenderError

from conftest import FakeExecutionClient, make_target

TEMPLATE = CommandTemplate("pull", "docker pull {{ image_ref }}")
TARGET = make_target("web-01")


def _stage(**kwargs) -> Stage:
    kwargs.setdefault("timeout", 5.0)
    return Stage(name="artifact_pull", template=TEMPLATE, **kwargs)


class SlowClient(ExecutionClient):
    """Reports TIMED_OUT for the first `slow_polls` polls, then succeeds."""

    def __init__(self, slow_polls: int) -> None:
        super().__init__()
        self.slow_polls = slow_polls
        self.timeouts = []

    def dispatch(self, target, command):
        return self.new_handle(target)

    def _wait(self, handle, timeout):
        self.timeouts.append(timeout)
        if len(self.timeouts) <= self.slow_polls:
            return CommandOutcome.timed_out()
        return CommandOutcome.succeeded("PULLED")


class TestStageRunner:
    def test_success_with_marker(self):
        client = FakeExecutionClient({"pull": [CommandOutcome.succeeded("... PULLED\n")]})
        outcome = StageRunner(client).run(TARGET, _stage(success_marker="PULLED"), {"image_ref": "app:1"})
        assert outcome.status == OutcomeStatus.SUCCESS
        assert client.dispatched == [("web-01", "pull", "docker pull app:1")]

    def test_missing_marker_is_failure(self):
        client = FakeExecutionClient({"pull": [CommandOutcome.succeeded("no marker here")]})
        outcome = StageRunner(client).run(TARGET, _stage(success_marker="PULLED"), {"image_ref": "app:1"})
        assert outcome.status == OutcomeStatus.FAILURE
        assert outcome.exit_code == 0
        assert "PULLED" in outcome.detail
        assert outcome.output == "no marker here"

    def test_custom_predicate_can_reject(self):
        client = FakeExecutionClient({"pull": [CommandOutcome.succeeded("PULLED warning")]})
        stage = _stage(success_marker="PULLED", predicate=lambda o: "warning" not in o.output)
        outcome = StageRunner(client).run(TARGET, stage, {"image_ref": "app:1"})
        assert outcome.status == OutcomeStatus.FAILURE
        assert outcome.detail == "success predicate rejected the output"

    def test_predicate_cannot_accept_failed_command(self):
        client = FakeExecutionClient({"pull": [CommandOutcome.failed("PULLED", exit_code=2)]})
        stage = _stage(predicate=lambda o: True)
        outcome = StageRunner(client).run(TARGET, stage, {"image_ref": "app:1"})
        assert outcome.status == OutcomeStatus.FAILURE
        assert outcome.exit_code == 2

    def test_unreachable_target_is_not_polled(self):
        client = FakeExecutionClient(unreachable=("web-01",))
        outcome = StageRunner(client).run(TARGET, _stage(), {"image_ref": "app:1"})
        assert outcome.status == OutcomeStatus.TARGET_UNREACHABLE
        assert "connection refused" in outcome.detail
        assert client.polls == []

    def test_rejected_dispatch_is_failure(self):
        class RejectingClient(FakeExecutionClient):
            def dispatch(self, target, command):
                raise DispatchError(target.id, "disk full", reason="rejected")

        outcome = StageRunner(RejectingClient()).run(TARGET, _stage(), {"image_ref": "app:1"})
        assert outcome.status == OutcomeStatus.FAILURE
        assert outcome.exit_code is None
        assert "disk full" in outcome.detail

    def test_timeout_reported_when_stage_budget_spent(self):
        client = FakeExecutionClient({"pull": [CommandOutcome.timed_out()]})
        outcome = StageRunner(client, progress_interval=0.0).run(
            TARGET, _stage(timeout=0), {"image_ref": "app:1"}
        )
        assert outcome.status == OutcomeStatus.TIMED_OUT
        assert len(client.polls) == 1

    def test_polls_in_progress_slices(self):
        client = SlowClient(slow_polls=2)
        outcome = StageRunner(client, progress_interval=0.0).run(
            TARGET, _stage(timeout=60, success_marker="PULLED"), {"image_ref": "app:1"}
        )
        assert outcome.ok
        assert client.timeouts == [0.0, 0.0, 0.0]

    def test_render_error_propagates_without_dispatch(self):
        client = FakeExecutionClient()
        with pytest.raises(RenderError):
            StageRunner(client).run(TARGET, _stage(), {})
        assert client.dispatched == []

    def test_renders_fresh_bindings_each_call(self):
        client = FakeExecutionClient()
        runner = StageRunner(client)
        runner.run(TARGET, _stage(), {"image_ref": "app:1"})
        runner.run(TARGET, _stage(), {"image_ref": "app:2"})
        assert [script for _, _, script in client.dispatched] == ["docker pull app:1", "docker pull app:2"]


class FlakyLinkClient(ExecutionClient):
    """Loses the connection on the first poll; the command is still running."""

    def __init__(self) -> None:
        super().__init__()
        self.waits = 0

    def dispatch(self, target, command):
        return self.new_handle(target)

    def _wait(self, handle, timeout):
        self.waits += 1
        if self.waits == 1:
            return CommandOutcome.unreachable("connection reset")
        return CommandOutcome.succeeded("PULLED")


def test_lost_connection_is_not_a_final_outcome():
    client = FlakyLinkClient()
    handle = client.dispatch(TARGET, None)

    assert client.poll(handle, 1).status == OutcomeStatus.TARGET_UNREACHABLE
    second = client.poll(handle, 1)
    assert second.status == OutcomeStatus.SUCCESS
    assert client.poll(handle, 1) is second
    assert client.waits == 2


class TestTimeoutExitCode:
    def test_timeout_exit_code_becomes_timed_out(self):
        client = FakeExecutionClient({"pull": [CommandOutcome.failed("attempt 3 failed", exit_code=124)]})
        stage = _stage(success_marker="PULLED", timeout_exit_code=124)
        outcome = StageRunner(client).run(TARGET, stage, {"image_ref": "app:1"})
        assert outcome.status == OutcomeStatus.TIMED_OUT
        assert outcome.exit_code == 124
        assert outcome.output == "attempt 3 failed"
        assert "deadline" in outcome.detail

    def test_other_exit_codes_stay_failures(self):
        client = FakeExecutionClient({"pull": [CommandOutcome.failed("no curl", exit_code=127)]})
        stage = _stage(timeout_exit_code=124)
        outcome = StageRunner(client).run(TARGET, stage, {"image_ref": "app:1"})
        assert outcome.status == OutcomeStatus.FAILURE

    def test_exit_code_ignored_without_setting(self):
        client = FakeExecutionClient({"pull": [CommandOutcome.failed(exit_code=124)]})
        outcome = StageRunner(client).run(TARGET, _stage(), {"image_ref": "app:1"})
        assert outcome.status == OutcomeStatus.FAILURE
