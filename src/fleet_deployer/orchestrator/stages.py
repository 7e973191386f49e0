"""The fixed deployment stage sequence."""

from __future__ import annotations

from typing import List, Optional

from ..config import DEFAULT_STAGE_TIMEOUTS, PipelineConfig
from ..models import Stage
from ..templates import (
    ARTIFACT_PULL,
    ARTIFACT_PULL_MARKER,
    DEPENDENCY_CHECK,
    DEPENDENCY_CHECK_MARKER,
    DEPLOY_SWAP,
    DEPLOY_SWAP_MARKER,
    HEALTH_CHECK,
    HEALTH_CHECK_MARKER,
    HEALTH_CHECK_TIMEOUT_EXIT,
)

STAGE_ORDER = ("dependency_check", "artifact_pull", "deploy_swap", "health_check")

# name -> (template, success marker, exit code meaning "ran out of time")
_STAGE_TEMPLATES = {
    "dependency_check": (DEPENDENCY_CHECK, DEPENDENCY_CHECK_MARKER, None),
    "artifact_pull": (ARTIFACT_PULL, ARTIFACT_PULL_MARKER, None),
    "deploy_swap": (DEPLOY_SWAP, DEPLOY_SWAP_MARKER, None),
    "health_check": (HEALTH_CHECK, HEALTH_CHECK_MARKER, HEALTH_CHECK_TIMEOUT_EXIT),
}


def default_stages(pipeline: Optional[PipelineConfig] = None) -> List[Stage]:
    """DependencyCheck, ArtifactPull, DeploySwap, HealthCheck with configured timeouts."""
    pipeline = pipeline or PipelineConfig()
    stages = []
    for name in STAGE_ORDER:
        template, marker, timeout_exit = _STAGE_TEMPLATES[name]
        stages.append(
            Stage(
                name=name,
                template=template,
                timeout=float(pipeline.stage_timeouts.get(name, DEFAULT_STAGE_TIMEOUTS[name])),
                success_marker=marker,
                retries=int(pipeline.stage_retries.get(name, 0)),
                timeout_exit_code=timeout_exit,
            )
        )
    return stages
