"""
Adapter base — the contracts between steps and the outside world.

Steps never talk to a cloud API, an SSH channel or an HTTP endpoint
directly; they go through one of the three capabilities below. Every
blocking call takes a caller-supplied timeout, and a timeout is always
reported as such (``timed_out=True`` or ``ProviderTimeout``), never as a
definite negative answer.

Concrete implementations:
    lxd.LxdHostProvider, ssh.SshRemoteExecutor, http.UrllibHttpProbe
    fake.FakeHostProvider, fake.FakeRemoteExecutor, fake.FakeHttpProbe
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from tracker_deployer.core.models.environment import Environment


# ── Result types ────────────────────────────────────────────────────


class HostInfo(BaseModel):
    """What the provider reports about one host."""

    host_id: str
    status: str  # "running", "starting", "stopped", "absent", ...
    ip: str | None = None

    @property
    def running(self) -> bool:
        return self.status == "running" and bool(self.ip)


class CommandResult(BaseModel):
    """Outcome of one remote command or file transfer."""

    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    @property
    def output(self) -> str:
        return self.stdout.strip()


class ProbeResult(BaseModel):
    """Outcome of one HTTP GET."""

    status: int | None = None
    error: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.status is not None and 200 <= self.status < 300


# ── Errors ──────────────────────────────────────────────────────────


class ProviderError(Exception):
    """The provider refused or failed a request."""


class ProviderTimeout(ProviderError):
    """The provider did not answer within the deadline."""


# ── Capabilities ────────────────────────────────────────────────────


class HostProvider(ABC):
    """Create, query and destroy the host for an environment."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g. 'lxd')."""

    @abstractmethod
    def create_host(self, environment: Environment, timeout: float) -> HostInfo:
        """Create the host, or return the existing one.

        Must be idempotent: calling it for an environment whose host
        already exists returns that host.
        """

    @abstractmethod
    def host_status(self, environment: Environment, timeout: float) -> HostInfo:
        """Current status. ``status == "absent"`` when there is no host."""

    @abstractmethod
    def destroy_host(self, environment: Environment, timeout: float) -> None:
        """Destroy the host. A missing host is not an error."""


class RemoteExecutor(ABC):
    """Run commands on, and copy files to, the provisioned host."""

    @abstractmethod
    def run(self, command: str, timeout: float) -> CommandResult:
        """Run a shell command remotely."""

    @abstractmethod
    def upload(self, local_path: Path, remote_path: str, timeout: float) -> CommandResult:
        """Copy one local file to ``remote_path``."""


class HttpProbe(ABC):
    @abstractmethod
    def get(self, url: str, timeout: float) -> ProbeResult:
        """GET ``url``. Never raises."""
