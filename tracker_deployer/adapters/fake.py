"""
Fake adapters — scriptable in-memory doubles.

Used by the test suite and by the CLI's ``--mock`` mode. By default
everything succeeds: the host comes up at ``10.140.190.10`` and every
remote command exits 0. Individual commands, uploads and URLs can be
scripted to fail or time out.
"""

from __future__ import annotations

from pathlib import Path

from tracker_deployer.adapters.base import (
    CommandResult,
    HostInfo,
    HostProvider,
    HttpProbe,
    ProbeResult,
    ProviderError,
    RemoteExecutor,
)
from tracker_deployer.core.models.environment import Environment

FAKE_IP = "10.140.190.10"


class FakeHostProvider(HostProvider):
    def __init__(self, ip: str = FAKE_IP, pending_polls: int = 0):
        self._ip = ip
        self._pending_polls = pending_polls
        self._hosts: dict[str, HostInfo] = {}
        self._fail_create: str | None = None
        self.call_log: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "fake"

    @property
    def hosts(self) -> dict[str, HostInfo]:
        return self._hosts

    def set_create_failure(self, error: str | None = "quota exceeded") -> None:
        self._fail_create = error

    def create_host(self, environment: Environment, timeout: float) -> HostInfo:
        self.call_log.append(("create_host", environment.name))
        if self._fail_create:
            raise ProviderError(self._fail_create)
        existing = self._hosts.get(environment.name)
        if existing is not None:
            return existing
        status = "starting" if self._pending_polls else "running"
        info = HostInfo(host_id=environment.config.instance_name, status=status, ip=self._ip)
        self._hosts[environment.name] = info
        return info

    def host_status(self, environment: Environment, timeout: float) -> HostInfo:
        self.call_log.append(("host_status", environment.name))
        info = self._hosts.get(environment.name)
        if info is None:
            return HostInfo(host_id=environment.config.instance_name, status="absent")
        if info.status == "starting":
            if self._pending_polls > 0:
                self._pending_polls -= 1
                return info
            info = info.model_copy(update={"status": "running"})
            self._hosts[environment.name] = info
        return info

    def destroy_host(self, environment: Environment, timeout: float) -> None:
        self.call_log.append(("destroy_host", environment.name))
        self._hosts.pop(environment.name, None)


class FakeRemoteExecutor(RemoteExecutor):
    """Commands succeed unless scripted.

    ``script(substring, result)`` makes every command containing
    ``substring`` return ``result``; the most recent script wins.
    """

    def __init__(self, default_stdout: str = ""):
        self._default_stdout = default_stdout
        self._scripts: list[tuple[str, CommandResult]] = []
        self._upload_failures: dict[str, CommandResult] = {}
        self.commands: list[str] = []
        self.uploads: list[tuple[str, str]] = []

    def script(self, substring: str, result: CommandResult) -> None:
        self._scripts.append((substring, result))

    def fail(self, substring: str, exit_code: int = 1, stderr: str = "failed") -> None:
        self.script(substring, CommandResult(exit_code=exit_code, stderr=stderr))

    def time_out(self, substring: str) -> None:
        self.script(substring, CommandResult(timed_out=True, stderr="timed out"))

    def respond(self, substring: str, stdout: str) -> None:
        self.script(substring, CommandResult(exit_code=0, stdout=stdout))

    def fail_upload(self, remote_suffix: str, stderr: str = "scp: failed") -> None:
        self._upload_failures[remote_suffix] = CommandResult(exit_code=1, stderr=stderr)

    def clear(self) -> None:
        self._scripts.clear()
        self._upload_failures.clear()

    def run(self, command: str, timeout: float) -> CommandResult:
        self.commands.append(command)
        for substring, result in reversed(self._scripts):
            if substring in command:
                return result
        return CommandResult(exit_code=0, stdout=self._default_stdout)

    def upload(self, local_path: Path, remote_path: str, timeout: float) -> CommandResult:
        self.uploads.append((str(local_path), remote_path))
        for suffix, result in self._upload_failures.items():
            if remote_path.endswith(suffix):
                return result
        return CommandResult(exit_code=0)


class FakeHttpProbe(HttpProbe):
    """Every URL answers 200 unless scripted."""

    def __init__(self):
        self._responses: dict[str, ProbeResult] = {}
        self.requests: list[str] = []

    def set_response(self, url: str, result: ProbeResult) -> None:
        self._responses[url] = result

    def get(self, url: str, timeout: float) -> ProbeResult:
        self.requests.append(url)
        return self._responses.get(url, ProbeResult(status=200))
