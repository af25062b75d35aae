"""
SSH remote executor — the system ``ssh`` and ``scp`` clients.

Non-interactive: ``BatchMode=yes`` so a missing key fails instead of
prompting. Host keys are not pinned; hosts are recreated often and get
a new key each time.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from tracker_deployer.adapters.base import CommandResult, RemoteExecutor
from tracker_deployer.adapters.process import run_process
from tracker_deployer.core.models.environment import Environment, SshCredentials

logger = logging.getLogger(__name__)


class SshRemoteExecutor(RemoteExecutor):
    def __init__(self, host: str, credentials: SshCredentials, connect_timeout: int = 10):
        self._host = host
        self._credentials = credentials
        self._connect_timeout = connect_timeout

    @classmethod
    def for_environment(cls, environment: Environment, ip: str) -> SshRemoteExecutor:
        return cls(ip, environment.config.ssh_credentials)

    @property
    def host(self) -> str:
        return self._host

    @property
    def target(self) -> str:
        return f"{self._credentials.username}@{self._host}"

    def _options(self) -> list[str]:
        key = os.path.expanduser(self._credentials.private_key_path)
        return [
            "-i", key,
            "-o", "BatchMode=yes",
            "-o", "StrictHostKeyChecking=no",
            "-o", "UserKnownHostsFile=/dev/null",
            "-o", "LogLevel=ERROR",
            "-o", f"ConnectTimeout={self._connect_timeout}",
        ]

    def run(self, command: str, timeout: float) -> CommandResult:
        argv = ["ssh", *self._options(), "-p", str(self._credentials.port), self.target, command]
        logger.debug("ssh %s: %s", self.target, command)
        return run_process(argv, timeout)

    def upload(self, local_path: Path, remote_path: str, timeout: float) -> CommandResult:
        argv = [
            "scp",
            *self._options(),
            "-P", str(self._credentials.port),
            str(local_path),
            f"{self.target}:{remote_path}",
        ]
        logger.debug("scp %s → %s:%s", local_path, self.target, remote_path)
        return run_process(argv, timeout)
