"""Orchestrator module for stage-based deployment execution.

- DeploymentOrchestrator: resolves a target and sequences the stages
- StageRunner: renders, dispatches, polls and classifies one stage
- default_stages: DependencyCheck, ArtifactPull, DeploySwap, HealthCheck
"""

from .stage_runner import StageRunner
from .stages import STAGE_ORDER, default_stages
from .orchestrator import DeploymentOrchestrator

__all__ = [
    "StageRunner",
    "STAGE_ORDER",
    "default_stages",
    "DeploymentOrchestrator",
]
