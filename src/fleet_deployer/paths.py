"""Unified path constants for fleet-deployer.

All local state is stored under the .fleet-deployer directory:
- .fleet-deployer/runs/   # JSON run reports, one per pipeline run
"""

from pathlib import Path

BASE_DIR = Path(".fleet-deployer")

RUNS_DIR = BASE_DIR / "runs"
