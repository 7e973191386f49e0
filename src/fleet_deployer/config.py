"""Configuration loading utilities for fleet-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .paths import RUNS_DIR

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")

DEFAULT_STAGE_TIMEOUTS = {
    "dependency_check": 600,
    "artifact_pull": 900,
    "deploy_swap": 300,
    "health_check": 120,
}


@dataclass
class SSHConfig:
    """Credentials shared by every target of a run."""

    username: Optional[str] = None
    port: int = 22
    auth_method: Optional[str] = None
    password: Optional[str] = None
    key_path: Optional[str] = None
    passphrase: Optional[str] = None
    timeout: int = 20


@dataclass
class FleetConfig:
    """Where targets come from and how commands reach them."""

    targets: List[Dict[str, Any]] = field(default_factory=list)
    probe_liveness: bool = True
    probe_timeout: float = 3.0
    execution: str = "ssh"  # "ssh" | "local"


@dataclass
class PipelineConfig:
    """Stage bindings, timeouts and orchestrator retry policy."""

    deploy_path: str = "/opt/app"
    container_name: str = "app"
    host_port: int = 80
    container_port: int = 8080
    health_path: str = "/health"
    health_attempts: int = 10
    health_interval: int = 3
    health_request_timeout: int = 5
    health_window: int = 60
    credentials_ref: str = "/root/.docker"
    extra_bindings: Dict[str, Any] = field(default_factory=dict)
    stage_timeouts: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_STAGE_TIMEOUTS))
    stage_retries: Dict[str, int] = field(default_factory=dict)
    resolve_attempts: int = 3
    resolve_backoff: float = 2.0
    poll_interval: float = 2.0
    max_output_bytes: int = 65536
    remote_dir: str = "/tmp/fleet-deployer"


@dataclass
class ReportConfig:
    """Settings for persisted run reports."""

    runs_dir: str = str(RUNS_DIR)
    enabled: bool = True


@dataclass
class AppConfig:
    """Top-level configuration."""

    ssh: SSHConfig = field(default_factory=SSHConfig)
    fleet: FleetConfig = field(default_factory=FleetConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    reports: ReportConfig = field(default_factory=ReportConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        def _section(name: str) -> Dict[str, Any]:
            section = payload.get(name, {}) or {}
            # skip comment fields such as "_note"
            return {k: v for k, v in section.items() if not k.startswith("_")}

        pipeline_payload = _section("pipeline")
        stage_timeouts = dict(DEFAULT_STAGE_TIMEOUTS)
        stage_timeouts.update(pipeline_payload.pop("stage_timeouts", {}) or {})
        pipeline_defaults = {k: v for k, v in PipelineConfig().__dict__.items() if k != "stage_timeouts"}

        return cls(
            ssh=SSHConfig(**{**SSHConfig().__dict__, **_section("ssh")}),
            fleet=FleetConfig(**{**FleetConfig().__dict__, **_section("fleet")}),
            pipeline=PipelineConfig(
                **{**pipeline_defaults, **pipeline_payload},
                stage_timeouts=stage_timeouts,
            ),
            reports=ReportConfig(**{**ReportConfig().__dict__, **_section("reports")}),
        )


def apply_env_overrides(config: AppConfig) -> AppConfig:
    """Apply FLEET_DEPLOYER_* environment variables on top of file values."""
    env_username = os.getenv("FLEET_DEPLOYER_SSH_USERNAME")
    if env_username:
        config.ssh.username = env_username

    env_port = os.getenv("FLEET_DEPLOYER_SSH_PORT")
    if env_port:
        config.ssh.port = int(env_port)

    env_password = os.getenv("FLEET_DEPLOYER_SSH_PASSWORD")
    if env_password:
        config.ssh.password = env_password
        config.ssh.auth_method = "password"

    env_key_path = os.getenv("FLEET_DEPLOYER_SSH_KEY_PATH")
    if env_key_path:
        config.ssh.key_path = env_key_path
        config.ssh.auth_method = "key"

    env_deploy_path = os.getenv("FLEET_DEPLOYER_DEPLOY_PATH")
    if env_deploy_path:
        config.pipeline.deploy_path = env_deploy_path

    env_runs_dir = os.getenv("FLEET_DEPLOYER_RUNS_DIR")
    if env_runs_dir:
        config.reports.runs_dir = env_runs_dir

    if not config.ssh.auth_method:
        config.ssh.auth_method = "key" if config.ssh.key_path else "password" if config.ssh.password else "agent"
    return config


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Environment variables (higher priority than config file):
    - FLEET_DEPLOYER_SSH_USERNAME: SSH username
    - FLEET_DEPLOYER_SSH_PORT: Default SSH port
    - FLEET_DEPLOYER_SSH_PASSWORD: SSH password (selects password auth)
    - FLEET_DEPLOYER_SSH_KEY_PATH: Path to SSH private key (selects key auth)
    - FLEET_DEPLOYER_DEPLOY_PATH: Deploy directory on targets
    - FLEET_DEPLOYER_RUNS_DIR: Where run reports are written
    """

    candidate_paths = []
    if path:
        candidate_paths.append(Path(path))
    candidate_paths.append(_DEFAULT_CONFIG_PATH)

    for candidate in candidate_paths:
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            return apply_env_overrides(AppConfig.from_dict(data))

    raise FileNotFoundError(
        f"Could not find configuration file. Looked in: {', '.join(str(p) for p in candidate_paths)}"
    )
