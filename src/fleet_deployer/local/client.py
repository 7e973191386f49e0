"""Local execution client.

Provides the same dispatch/poll interface as SSHExecutionClient but runs
scripts on this machine. Only targets whose address is a loopback name or
this host's name are accepted.
"""

from __future__ import annotations

import logging
import platform
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, Optional, Tuple

from ..execution.base import DispatchError, ExecutionClient, UnknownHandleError, truncate_output
from ..models import CommandHandle, CommandOutcome, Target
from ..templates import RenderedCommand

logger = logging.getLogger(__name__)

LOCAL_ADDRESSES = ("localhost", "127.0.0.1", "::1")


class LocalExecutionClient(ExecutionClient):
    """Runs rendered scripts with `sh` as detached local processes."""

    def __init__(
        self,
        *,
        work_dir: Optional[str] = None,
        shell: str = "sh",
        max_output_bytes: int = 65536,
    ) -> None:
        super().__init__()
        self._owns_work_dir = work_dir is None
        self.work_dir = Path(work_dir or tempfile.mkdtemp(prefix="fleet-deployer-"))
        self.work_dir.mkdir(parents=True, exist_ok=True)
        self.shell = shell
        self.max_output_bytes = max_output_bytes
        self._processes: Dict[str, Tuple[subprocess.Popen, Path]] = {}

    def accepts(self, target: Target) -> bool:
        return target.host in LOCAL_ADDRESSES or target.host == platform.node()

    def dispatch(self, target: Target, command: RenderedCommand) -> CommandHandle:
        if not self.accepts(target):
            raise DispatchError(target.id, f"{target.host} is not a local address")
        if shutil.which(self.shell) is None:
            raise DispatchError(target.id, f"shell '{self.shell}' not available")

        handle = self.new_handle(target)
        script_path = self.work_dir / f"{handle.id}.sh"
        output_path = self.work_dir / f"{handle.id}.out"
        script_path.write_bytes(command.encoded)
        with open(output_path, "wb") as output:
            process = subprocess.Popen(
                [self.shell, str(script_path)],
                stdout=output,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                cwd=str(self.work_dir),
            )
        self._processes[handle.id] = (process, output_path)
        logger.debug("Started %s locally (pid %s)", command.template_name, process.pid)
        return handle

    def _wait(self, handle: CommandHandle, timeout: float) -> CommandOutcome:
        entry = self._processes.get(handle.id)
        if entry is None:
            raise UnknownHandleError(handle.id)
        process, output_path = entry
        try:
            exit_code = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            output, _ = self._read_output(output_path)
            return CommandOutcome.timed_out(output, detail=f"command still running after {timeout:.0f}s")

        output, truncated = self._read_output(output_path)
        if exit_code == 0:
            return CommandOutcome.succeeded(output, 0, truncated)
        return CommandOutcome.failed(output, exit_code, truncated)

    def _read_output(self, output_path: Path) -> Tuple[str, bool]:
        try:
            text = output_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return "", False
        return truncate_output(text.strip(), self.max_output_bytes)

    def close(self) -> None:
        running = [p for p, _ in self._processes.values() if p.poll() is None]
        if self._owns_work_dir and not running:
            shutil.rmtree(self.work_dir, ignore_errors=True)
