"""Run report persistence and lookup."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..models import FleetSelector, PipelineRun, VerdictKind

logger = logging.getLogger(__name__)

_SLUG = re.compile(r"[^A-Za-z0-9_.=-]+")


class RunReportWriter:
    """Writes one JSON report per pipeline run."""

    def __init__(self, runs_dir: Union[str, Path]) -> None:
        self.runs_dir = Path(runs_dir)

    def path_for(self, run: PipelineRun) -> Path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        slug = _SLUG.sub("-", run.selector.describe()) or "all"
        return self.runs_dir / f"run_{slug}_{timestamp}_{run.run_id}.json"

    def write(self, run: PipelineRun) -> Path:
        self.runs_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(run)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(run.to_dict(), f, indent=2, ensure_ascii=False)
        return path


def load_reports(runs_dir: Union[str, Path]) -> List[Dict[str, Any]]:
    """Load every readable report, newest run first.

    Each report gets a `_file` key with its path.
    """
    runs_dir = Path(runs_dir)
    if not runs_dir.is_dir():
        return []
    reports = []
    for path in runs_dir.glob("run_*.json"):
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Skipping unreadable report %s: %s", path.name, exc)
            continue
        data["_file"] = str(path)
        reports.append(data)
    reports.sort(key=lambda r: (r.get("started_at") or "", r["_file"]), reverse=True)
    return reports


def deployment_stack(runs_dir: Union[str, Path], selector: FleetSelector) -> List[str]:
    """Replay completed runs for `selector` into a stack of deployed images.

    A deploy pushes its image. A rollback pops the image it replaced and
    pushes its own unless that is already on top, so repeated rollbacks walk
    further back instead of flipping between the last two images.
    """
    key = selector.describe()
    stack: List[str] = []
    for report in reversed(load_reports(runs_dir)):
        if report.get("selector_key") != key:
            continue
        if report.get("verdict_kind") != VerdictKind.COMPLETED.value or not report.get("image_ref"):
            continue
        image = report["image_ref"]
        if report.get("trigger") == "rollback" and stack:
            stack.pop()
        if not stack or stack[-1] != image:
            stack.append(image)
    return stack


def current_image(runs_dir: Union[str, Path], selector: FleetSelector) -> Optional[str]:
    """Image left running by the most recent completed run for `selector`."""
    stack = deployment_stack(runs_dir, selector)
    return stack[-1] if stack else None


def previous_image(
    runs_dir: Union[str, Path],
    selector: FleetSelector,
    current: Optional[str] = None,
) -> Optional[str]:
    """Image a rollback from `current` should restore, or None.

    With `current` unset, the top of the deployment stack is taken as current.
    """
    stack = deployment_stack(runs_dir, selector)
    if not stack:
        return None
    current = current or stack[-1]
    for image in reversed(stack):
        if image != current:
            return image
    return None
