"""Fleet-wide SSH login material."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, TYPE_CHECKING

from ..models import Target

if TYPE_CHECKING:
    from ..config import SSHConfig

AUTH_METHODS = ("password", "key", "agent")

# auth method -> field that must be set for it
_SECRET_FIELD = {"password": "password", "key": "key_path"}


@dataclass(frozen=True)
class SSHCredentials:
    """Login material shared by every target of one run.

    Acquired once per run and never mutated; `for_target` derives the
    per-connection copy that carries the target's host and port.
    """

    host: str
    username: str
    port: int = 22
    auth_method: str = "password"
    password: Optional[str] = None
    key_path: Optional[str] = None
    passphrase: Optional[str] = None
    timeout: int = 20

    @classmethod
    def from_config(cls, ssh: "SSHConfig") -> "SSHCredentials":
        """Fleet-wide credentials from the `ssh` config section (no host yet)."""
        auth_method = ssh.auth_method or "agent"
        missing = []
        if not ssh.username:
            missing.append("user")
        if auth_method == "password" and not ssh.password:
            missing.append("password")
        if auth_method == "key" and not ssh.key_path:
            missing.append("key-path")
        if missing:
            raise ValueError("Missing SSH connection values: " + ", ".join(missing))
        credentials = cls(
            host="",
            username=str(ssh.username),
            port=ssh.port,
            auth_method=auth_method,
            password=ssh.password,
            key_path=ssh.key_path,
            passphrase=ssh.passphrase,
            timeout=ssh.timeout,
        )
        credentials.validate()
        return credentials

    def validate(self) -> None:
        if self.auth_method not in AUTH_METHODS:
            raise ValueError(f"Unsupported auth method: {self.auth_method}")
        secret = _SECRET_FIELD.get(self.auth_method)
        if secret and not getattr(self, secret):
            raise ValueError(f"{self.auth_method} auth for {self.username!r} needs {secret}")

    def for_target(self, target: Target) -> "SSHCredentials":
        return replace(self, host=target.host, port=target.port or self.port)

    def __repr__(self) -> str:
        # keeps secrets out of debug logs and tracebacks
        return (
            f"SSHCredentials({self.username}@{self.host or '*'}:{self.port}, "
            f"auth={self.auth_method})"
        )
