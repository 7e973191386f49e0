"""Dispatch/poll execution over SSH.

Each dispatch stages the rendered script on the target through stdin and
launches it detached with `nohup`. Output and exit status land in files
named after the handle, so a poll only needs a short `cat` and the SSH
channel is never held open for the lifetime of the command.
"""

from __future__ import annotations

import logging
import math
import shlex
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from ..execution.base import DispatchError, ExecutionClient, UnknownHandleError, truncate_output
from ..models import CommandHandle, CommandOutcome, Target
from ..templates import RenderedCommand
from .credentials import SSHCredentials
from .session import SSHConnectionError, SSHSession

logger = logging.getLogger(__name__)

# $1 is the per-handle path prefix; the exit code is written atomically
_LAUNCH_SCRIPT = (
    'sh "$1.sh" > "$1.out" 2>&1; '
    'echo $? > "$1.rc.tmp"; '
    'mv "$1.rc.tmp" "$1.rc"'
)


class SSHExecutionClient(ExecutionClient):
    """Execution client that reaches targets with paramiko sessions."""

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        remote_dir: str = "/tmp/fleet-deployer",
        poll_interval: float = 2.0,
        max_output_bytes: int = 65536,
        command_timeout: int = 30,
        session_factory: Callable[[SSHCredentials], SSHSession] | None = None,
    ) -> None:
        super().__init__()
        self.credentials = credentials
        self.remote_dir = remote_dir.rstrip("/") or "/tmp"
        self.poll_interval = poll_interval
        self.max_output_bytes = max_output_bytes
        self.command_timeout = command_timeout
        self._session_factory = session_factory or SSHSession
        self._sessions: Dict[str, SSHSession] = {}
        self._handles: Dict[str, Tuple[Target, str]] = {}
        self._sessions_lock = threading.Lock()

    def _session(self, target: Target) -> SSHSession:
        with self._sessions_lock:
            session = self._sessions.get(target.id)
            if session is None:
                session = self._session_factory(self.credentials.for_target(target))
                self._sessions[target.id] = session
        session.connect()
        return session

    def _drop(self, target: Target) -> None:
        with self._sessions_lock:
            session = self._sessions.pop(target.id, None)
        if session:
            session.close()

    def dispatch(self, target: Target, command: RenderedCommand) -> CommandHandle:
        handle = self.new_handle(target)
        prefix = f"{self.remote_dir}/{handle.id}"
        quoted_dir = shlex.quote(self.remote_dir)
        try:
            session = self._session(target)
            staged = session.run(
                f"mkdir -p {quoted_dir} && cat > {shlex.quote(prefix + '.sh')}",
                timeout=self.command_timeout,
                input_data=command.encoded,
            )
            if not staged.ok:
                raise DispatchError(
                    target.id, f"could not stage script: {staged.stderr}", reason="rejected"
                )
            launched = session.run(
                f"nohup sh -c {shlex.quote(_LAUNCH_SCRIPT)} fleet-deployer {shlex.quote(prefix)} "
                "> /dev/null 2>&1 < /dev/null & echo $!",
                timeout=self.command_timeout,
            )
            if not launched.ok:
                raise DispatchError(
                    target.id, f"could not launch script: {launched.stderr}", reason="rejected"
                )
        except SSHConnectionError as exc:
            self._drop(target)
            raise DispatchError(target.id, str(exc)) from exc

        self._handles[handle.id] = (target, prefix)
        logger.debug("Dispatched %s to %s (pid %s)", command.template_name, target.id, launched.stdout)
        return handle

    def _wait(self, handle: CommandHandle, timeout: float) -> CommandOutcome:
        entry = self._handles.get(handle.id)
        if entry is None:
            raise UnknownHandleError(handle.id)
        target, prefix = entry
        deadline = time.monotonic() + timeout

        while True:
            try:
                session = self._session(target)
                status = session.run(
                    f"cat {shlex.quote(prefix + '.rc')} 2>/dev/null",
                    timeout=self._call_timeout(deadline),
                )
                exit_code = _parse_exit_code(status.stdout) if status.ok else None
                if exit_code is not None:
                    output, truncated = self._read_output(session, prefix, self._call_timeout(deadline))
                    if exit_code == 0:
                        return CommandOutcome.succeeded(output, 0, truncated)
                    return CommandOutcome.failed(output, exit_code, truncated)

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    output, _ = self._read_output(session, prefix, self._call_timeout(deadline))
                    return CommandOutcome.timed_out(
                        output, detail=f"command still running after {timeout:.0f}s"
                    )
            except SSHConnectionError as exc:
                self._drop(target)
                return CommandOutcome.unreachable(str(exc))
            time.sleep(min(self.poll_interval, max(remaining, 0.0)))

    def _call_timeout(self, deadline: float) -> int:
        # every remote call made during a poll stays within the poll's deadline
        return max(1, min(self.command_timeout, math.ceil(deadline - time.monotonic())))

    def _read_output(self, session: SSHSession, prefix: str, timeout: int) -> Tuple[str, bool]:
        out_path = shlex.quote(prefix + ".out")
        size = session.run(f"wc -c < {out_path} 2>/dev/null", timeout=timeout)
        tail = session.run(
            f"tail -c {self.max_output_bytes} {out_path} 2>/dev/null",
            timeout=timeout,
        )
        try:
            total = int(size.stdout.strip() or 0)
        except ValueError:
            total = 0
        text, clipped = truncate_output(tail.stdout, self.max_output_bytes)
        return text, clipped or total > self.max_output_bytes

    def close(self) -> None:
        with self._sessions_lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()


def _parse_exit_code(text: str) -> Optional[int]:
    text = text.strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        return None
