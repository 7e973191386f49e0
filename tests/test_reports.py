"""Tests for run report persistence and rollback image lookup."""

import json

from fleet_deployer.config import AppConfig
from fleet_deployer.fleet import StaticInventory
from fleet_deployer.models import (
    CommandOutcome,
    FleetSelector,
    PipelineRun,
    StageRecord,
    Target,
    Verdict,
)
from fleet_deployer.reports import (
    RunReportWriter,
    current_image,
    deployment_stack,
    load_reports,
    previous_image,
)
from fleet_deployer.workflow import DeploymentWorkflow

WEB = FleetSelector({"role": "web"})


def _run(run_id, image, started_at, verdict=None, selector=WEB, trigger="deploy"):
    return PipelineRun(
        run_id=run_id,
        selector=selector,
        image_ref=image,
        verdict=verdict or Verdict.completed(),
        target=Target(id="web-01"),
        records=(StageRecord(1, "dependency_check", CommandOutcome.succeeded("ok")),),
        started_at=started_at,
        finished_at=started_at,
        trigger=trigger,
    )


def _write_history(runs_dir):
    writer = RunReportWriter(runs_dir)
    writer.write(_run("r1", "app:1.0", "2026-01-01T10:00:00"))
    writer.write(_run("r2", "app:1.1", "2026-01-02T10:00:00"))
    writer.write(_run("r3", "app:1.2", "2026-01-03T10:00:00", Verdict.aborted_at(4)))
    writer.write(_run("r4", "db:9", "2026-01-04T10:00:00", selector=FleetSelector({"role": "db"})))
    return writer


def test_writer_produces_json_report(tmp_path):
    path = RunReportWriter(tmp_path / "runs").write(_run("abc123", "app:1.0", "2026-01-01T10:00:00"))
    assert path.parent == tmp_path / "runs"
    assert path.name.startswith("run_role=web_")
    assert path.name.endswith("_abc123.json")
    report = json.loads(path.read_text(encoding="utf-8"))
    assert report["verdict"] == "Completed"
    assert report["stages"][0]["captured_output"] == "ok"


def test_load_reports_newest_first(tmp_path):
    _write_history(tmp_path)
    (tmp_path / "run_broken.json").write_text("{not json", encoding="utf-8")

    reports = load_reports(tmp_path)
    assert [r["run_id"] for r in reports] == ["r4", "r3", "r2", "r1"]
    assert all("_file" in r for r in reports)


def test_load_reports_missing_dir(tmp_path):
    assert load_reports(tmp_path / "nothing-here") == []


def test_current_and_previous_image(tmp_path):
    _write_history(tmp_path)
    assert current_image(tmp_path, WEB) == "app:1.1"
    assert previous_image(tmp_path, WEB) == "app:1.0"
    assert previous_image(tmp_path, WEB, current="app:1.0") == "app:1.1"
    assert previous_image(tmp_path, FleetSelector({"role": "db"})) is None
    assert current_image(tmp_path, FleetSelector({"role": "cache"})) is None


def test_workflow_rollback_image(tmp_path):
    _write_history(tmp_path)
    config = AppConfig.from_dict({"reports": {"runs_dir": str(tmp_path)}})
    workflow = DeploymentWorkflow(config, inventory=StaticInventory([]))
    assert workflow.rollback_image(WEB) == "app:1.0"
    assert workflow.rollback_image(FleetSelector({"role": "db"})) is None


def test_deployment_stack_skips_failed_and_repeated_runs(tmp_path):
    writer = _write_history(tmp_path)
    writer.write(_run("r5", "app:1.1", "2026-01-05T10:00:00"))
    assert deployment_stack(tmp_path, WEB) == ["app:1.0", "app:1.1"]
    assert deployment_stack(tmp_path, FleetSelector({"role": "db"})) == ["db:9"]


def test_repeated_rollbacks_walk_back_through_history(tmp_path):
    writer = RunReportWriter(tmp_path)
    writer.write(_run("r1", "app:1.0", "2026-01-01T10:00:00"))
    writer.write(_run("r2", "app:1.1", "2026-01-02T10:00:00"))
    writer.write(_run("r3", "app:1.2", "2026-01-03T10:00:00"))

    writer.write(_run("r4", "app:1.1", "2026-01-04T10:00:00", trigger="rollback"))
    assert current_image(tmp_path, WEB) == "app:1.1"
    assert previous_image(tmp_path, WEB) == "app:1.0"

    writer.write(_run("r5", "app:1.0", "2026-01-05T10:00:00", trigger="rollback"))
    assert current_image(tmp_path, WEB) == "app:1.0"
    assert previous_image(tmp_path, WEB) is None


def test_failed_rollback_leaves_stack_alone(tmp_path):
    writer = RunReportWriter(tmp_path)
    writer.write(_run("r1", "app:1.0", "2026-01-01T10:00:00"))
    writer.write(_run("r2", "app:1.1", "2026-01-02T10:00:00"))
    writer.write(_run("r3", "app:1.0", "2026-01-03T10:00:00", Verdict.aborted_at(3), trigger="rollback"))
    assert deployment_stack(tmp_path, WEB) == ["app:1.0", "app:1.1"]


def test_deploy_after_rollback_is_pushed(tmp_path):
    writer = RunReportWriter(tmp_path)
    writer.write(_run("r1", "app:1.0", "2026-01-01T10:00:00"))
    writer.write(_run("r2", "app:1.1", "2026-01-02T10:00:00"))
    writer.write(_run("r3", "app:1.0", "2026-01-03T10:00:00", trigger="rollback"))
    writer.write(_run("r4", "app:1.2", "2026-01-04T10:00:00"))
    assert deployment_stack(tmp_path, WEB) == ["app:1.0", "app:1.2"]
    assert previous_image(tmp_path, WEB) == "app:1.0"
