"""Command-line interface for fleet-deployer."""

from __future__ import annotations

import argparse
import json
import signal
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import AppConfig, load_config
from .models import FleetSelector, Liveness, PipelineRun, VerdictKind
from .reports import load_reports
from .utils.logging import set_verbose
from .workflow import DeploymentRequest, DeploymentWorkflow, summarize

console = Console()

_STATUS_STYLE = {
    "success": "green",
    "failure": "red",
    "timed_out": "yellow",
    "target_unreachable": "magenta",
}


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    runs_dir: str


def _add_selector_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--select", "-s", action="append", required=True, metavar="KEY=VALUE",
        help="Label predicate; repeat for several labels",
    )
    parser.add_argument(
        "--require-state", choices=[l.value for l in Liveness], default=Liveness.ALIVE.value,
        help="Liveness state the target must be in (default: alive)",
    )
    parser.add_argument("--all", action="store_true", dest="fleet", help="Deploy to every matching target")
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of targets with --all")
    parser.add_argument("--workers", type=int, default=4, help="Concurrent target pipelines with --all")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleet-deployer",
        description="Promote a built container image onto a fleet target and verify it.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser("deploy", help="Deploy an image to the selected target")
    _add_selector_args(deploy_parser)
    deploy_parser.add_argument("--image", required=True, help="Image reference, e.g. registry/app:1.4.2")

    rollback_parser = subparsers.add_parser(
        "rollback", help="Redeploy the previously completed image for a selector"
    )
    _add_selector_args(rollback_parser)
    rollback_parser.add_argument(
        "--to", dest="image", default=None,
        help="Explicit image to roll back to (default: previous completed image)",
    )

    runs_parser = subparsers.add_parser("runs", help="View run reports")
    runs_parser.add_argument("--list", "-l", action="store_true", dest="list_runs", help="List all run reports")
    runs_parser.add_argument("--latest", action="store_true", help="Show the latest run report")
    runs_parser.add_argument("--file", "-f", type=str, help="Show a specific report file")
    runs_parser.add_argument(
        "--summary", action="store_true", help="Show summary only (no captured output)"
    )

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    return CLIContext(config=config, runs_dir=config.reports.runs_dir)


@contextmanager
def _cancel_on_interrupt() -> Iterator[threading.Event]:
    """First Ctrl-C cancels the run between stages; a second one aborts."""
    cancel_event = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel_event
        return

    def _handler(signum, frame) -> None:
        if cancel_event.is_set():
            raise KeyboardInterrupt
        cancel_event.set()
        console.print("\n[yellow]Cancelling after the current stage (Ctrl-C again to abort)[/yellow]")

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield cancel_event
    finally:
        signal.signal(signal.SIGINT, previous)


def render_report(report: Dict[str, Any], summary_only: bool = False) -> None:
    """Display one run report."""
    target = report.get("target") or {}
    verdict = report.get("verdict", "unknown")
    style = "green" if report.get("verdict_kind") == "completed" else "red"

    console.rule(f"Run {report.get('run_id', '?')}")
    console.print(f"Selector: {report.get('selector_key', '')}")
    console.print(f"Image:    {escape(report.get('image_ref', ''))}")
    console.print(f"Target:   {target.get('id', 'N/A')}")
    console.print(f"Started:  {report.get('started_at', 'N/A')}")
    console.print(f"Finished: {report.get('finished_at', 'N/A')}")
    console.print(f"Verdict:  [{style}]{verdict}[/{style}]")
    if not report.get("attempted", True):
        console.print("[red]Deployment was not attempted[/red]: " + escape(str(report.get("detail") or "")))

    stages = report.get("stages", [])
    if stages:
        table = Table(show_header=True, header_style="bold")
        table.add_column("#", justify="right")
        table.add_column("Stage")
        table.add_column("Outcome")
        table.add_column("Exit")
        table.add_column("Attempts", justify="right")
        table.add_column("Detail")
        for stage in stages:
            outcome = stage.get("outcome", "?")
            table.add_row(
                str(stage.get("index", "")),
                stage.get("stage_name", ""),
                f"[{_STATUS_STYLE.get(outcome, 'white')}]{outcome}[/]",
                "" if stage.get("exit_code") is None else str(stage.get("exit_code")),
                str(stage.get("attempts", 1)),
                escape(stage.get("detail") or ""),
            )
        console.print(table)

    if not summary_only:
        for stage in stages:
            output = (stage.get("captured_output") or "").strip()
            if not output:
                continue
            lines = output.splitlines()
            console.print(f"[bold]{stage.get('stage_name')}[/bold] output:")
            for line in lines[-20:]:
                console.print(f"  │ {line[:160]}", markup=False, highlight=False)
            if len(lines) > 20:
                console.print(f"  │ ... ({len(lines)} lines total)")


def handle_runs_command(args: argparse.Namespace, context: CLIContext) -> int:
    """Handle the runs subcommand."""
    if args.file:
        path = Path(args.file)
        if not path.exists():
            path = Path(context.runs_dir) / args.file
        if not path.exists():
            console.print(f"[red]Report not found: {args.file}[/red]")
            return 1
        with open(path, "r", encoding="utf-8") as f:
            render_report(json.load(f), summary_only=args.summary)
        return 0

    reports = load_reports(context.runs_dir)
    if not reports:
        console.print("No run reports found. Run a deployment first.")
        return 0

    if args.list_runs:
        table = Table(title=f"Run reports in {context.runs_dir}")
        for column in ("#", "Verdict", "Selector", "Image", "Target", "Started", "File"):
            table.add_column(column)
        for i, report in enumerate(reports, 1):
            table.add_row(
                str(i),
                report.get("verdict", "?"),
                report.get("selector_key", ""),
                report.get("image_ref", ""),
                (report.get("target") or {}).get("id", "-"),
                (report.get("started_at") or "")[:19].replace("T", " "),
                Path(report["_file"]).name,
            )
        console.print(table)
        return 0

    render_report(reports[0], summary_only=args.summary)
    return 0


def _request_from_args(args: argparse.Namespace) -> DeploymentRequest:
    selector = FleetSelector.parse(args.select, Liveness(args.require_state))
    return DeploymentRequest(
        selector=selector,
        image_ref=args.image or "",
        fleet=args.fleet,
        limit=args.limit,
        max_workers=args.workers,
    )


def _print_runs(runs: List[PipelineRun]) -> int:
    for run in runs:
        render_report(run.to_dict(), summary_only=True)
    if not runs:
        return 1
    return 0 if summarize(runs).kind == VerdictKind.COMPLETED else 1


def dispatch_command(args: argparse.Namespace) -> int:
    context = _build_context(args)

    if args.command == "runs":
        return handle_runs_command(args, context)

    workflow = DeploymentWorkflow(context.config)
    request = _request_from_args(args)

    with _cancel_on_interrupt() as cancel_event:
        if args.command == "deploy":
            runs = workflow.run_deploy(request, cancel_event)
        elif args.command == "rollback":
            runs = workflow.run_rollback(request, cancel_event)
            if not runs:
                console.print("[red]Nothing to roll back to: no earlier completed run recorded[/red]")
        else:
            raise ValueError(f"Unsupported command: {args.command}")
    return _print_runs(runs)


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    set_verbose(args.verbose)
    try:
        return dispatch_command(args)
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        return 2
