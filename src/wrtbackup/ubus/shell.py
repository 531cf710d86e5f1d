"""SSH shell access used to read UCI configuration from OpenWrt devices."""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any

import paramiko


class ShellClientError(RuntimeError):
    """Base exception for SSH shell errors."""


class ShellAuthenticationError(ShellClientError):
    """Raised when SSH authentication fails."""


class ShellCommandError(ShellClientError):
    """Raised when a command cannot be executed at all."""


@dataclass(slots=True)
class CommandResult:
    """Captured output of one remote command."""

    stdout: bytes
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0 and bool(self.stdout.strip())


@dataclass(slots=True)
class ShellClient:
    """SSH client for OpenWrt devices.

    Use as a context manager; the connection is opened on entry and closed on
    exit::

        with ShellClient(host, username, password) as shell:
            result = shell.run("uci export network")
    """

    host: str
    username: str
    password: str
    port: int = 22
    timeout: float = 10.0
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    log_extra: dict[str, Any] = field(default_factory=dict)
    _ssh: paramiko.SSHClient | None = field(default=None, repr=False)

    def __enter__(self) -> "ShellClient":
        self._ssh = self._connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        if self._ssh is not None:
            self._ssh.close()
            self._ssh = None

    def _connect(self) -> paramiko.SSHClient:
        ssh = paramiko.SSHClient()
        ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        try:
            self.logger.debug("opening ssh session host=%s port=%s", self.host, self.port, extra=self.log_extra)
            ssh.connect(
                self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                look_for_keys=False,
                allow_agent=False,
                timeout=self.timeout,
                banner_timeout=self.timeout,
                auth_timeout=self.timeout,
            )
            self.logger.info("ssh ok host=%s port=%s", self.host, self.port, extra=self.log_extra)
            return ssh
        except paramiko.AuthenticationException as exc:  # pragma: no cover - network dependent
            ssh.close()
            raise ShellAuthenticationError("SSH authentication failed") from exc
        except (paramiko.SSHException, socket.error, TimeoutError, EOFError) as exc:  # pragma: no cover - network dependent
            ssh.close()
            raise ShellClientError("SSH connection failed") from exc

    def run(self, command: str) -> CommandResult:
        if self._ssh is None:
            raise ShellClientError("Not connected")

        self.logger.debug("executing command='%s'", command, extra=self.log_extra)
        try:
            _, stdout, stderr = self._ssh.exec_command(command, timeout=self.timeout)
            output = stdout.read()
            error_output = stderr.read().decode("utf-8", errors="replace")
            exit_status = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, socket.error, TimeoutError, EOFError) as exc:
            raise ShellCommandError(f"Unable to execute command '{command}'") from exc

        return CommandResult(stdout=output, stderr=error_output, exit_status=exit_status)
