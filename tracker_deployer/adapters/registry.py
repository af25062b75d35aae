"""
Adapter registry — which concrete collaborators a command uses.

    real()  lxc / Hetzner API, ssh+scp, urllib
    fake()  in-memory doubles (tests and ``--mock``)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from tracker_deployer.adapters.base import HostProvider, HttpProbe, RemoteExecutor
from tracker_deployer.adapters.fake import FakeHostProvider, FakeHttpProbe, FakeRemoteExecutor
from tracker_deployer.adapters.hetzner import HetznerHostProvider
from tracker_deployer.adapters.http import UrllibHttpProbe
from tracker_deployer.adapters.lxd import LxdHostProvider
from tracker_deployer.adapters.ssh import SshRemoteExecutor
from tracker_deployer.core.engine.step import RemoteFactory
from tracker_deployer.core.errors import DeployerError
from tracker_deployer.core.models.environment import Environment

logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    """External capabilities handed to every pipeline run."""

    providers: dict[str, HostProvider]
    probe: HttpProbe
    remote_factory: RemoteFactory
    mock: bool = False

    # Set by fake() so tests and --mock output can inspect the doubles
    fake_remote: FakeRemoteExecutor | None = field(default=None, repr=False)

    def provider_for(self, environment: Environment) -> HostProvider:
        kind = environment.config.provider.provider
        provider = self.providers.get(kind)
        if provider is None:
            raise DeployerError(
                f"No host provider registered for '{kind}'",
                f"Supported providers: {', '.join(sorted(self.providers))}.",
                environment=environment.name,
            )
        return provider

    @classmethod
    def real(cls) -> Collaborators:
        return cls(
            providers={"lxd": LxdHostProvider(), "hetzner": HetznerHostProvider()},
            probe=UrllibHttpProbe(),
            remote_factory=SshRemoteExecutor.for_environment,
        )

    @classmethod
    def fake(
        cls,
        provider: FakeHostProvider | None = None,
        remote: FakeRemoteExecutor | None = None,
        probe: FakeHttpProbe | None = None,
    ) -> Collaborators:
        provider = provider or FakeHostProvider()
        if remote is None:
            remote = FakeRemoteExecutor()
            remote.respond("docker compose ps", "tracker\ncaddy\nmysql\n")
        fake_remote = remote

        def remote_factory(environment: Environment, ip: str) -> RemoteExecutor:
            return fake_remote

        return cls(
            providers={"lxd": provider, "hetzner": provider},
            probe=probe or FakeHttpProbe(),
            remote_factory=remote_factory,
            mock=True,
            fake_remote=fake_remote,
        )
