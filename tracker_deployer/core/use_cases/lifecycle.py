"""
The lifecycle transitions.

    provision   created     → provisioned
    register    created     → provisioned   (existing host)
    configure   provisioned → configured
    release     configured  → released
    run         released    → running
"""

from __future__ import annotations

import ipaddress
from typing import Any

from tracker_deployer.core.engine.step import Step
from tracker_deployer.core.errors import DeployerError
from tracker_deployer.core.lifecycle.state_machine import Transition
from tracker_deployer.core.models.environment import Environment
from tracker_deployer.core.models.outcome import ErrorKind
from tracker_deployer.core.steps import (
    CheckServiceHealth,
    CreateHost,
    CreateStorage,
    DeployFiles,
    InstallCompose,
    InstallDocker,
    RenderTemplates,
    StartServices,
    VerifyCloudInitComplete,
    WaitForHost,
    WaitSshConnectivity,
)
from tracker_deployer.core.use_cases.base import Deployer, TransitionHandler, TransitionResult


class ProvisionHandler(TransitionHandler):
    transition = Transition.PROVISION

    def build_steps(self, env: Environment) -> list[Step]:
        return [
            CreateHost(),
            WaitForHost(),
            WaitSshConnectivity(),
            VerifyCloudInitComplete(wait=True),
        ]

    def apply_facts(self, env: Environment, facts: dict[str, Any]) -> None:
        if facts.get("instance_ip"):
            env.runtime.instance_ip = facts["instance_ip"]
        if facts.get("host_id"):
            env.runtime.host_id = facts["host_id"]
            env.runtime.registered = False


def parse_instance_ip(value: str) -> str:
    """Normalise an IPv4/IPv6 literal, or raise a ``DeployerError``."""
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        raise DeployerError(
            f"Invalid instance IP {value!r}",
            "Pass an IP literal such as 192.168.1.100 or 2001:db8::1.",
            kind=ErrorKind.CONFIG_VIOLATION,
            transition=Transition.REGISTER.value,
        ) from None


class RegisterHandler(TransitionHandler):
    """Adopt a host that already exists instead of creating one.

    The provider is never called; the host only has to accept SSH with
    the environment's credentials and have finished cloud-init. Since
    the deployer did not create it, ``destroy`` leaves it alone.
    """

    transition = Transition.REGISTER

    def __init__(self, deployer: Deployer, instance_ip: str):
        super().__init__(deployer)
        self.instance_ip = parse_instance_ip(instance_ip)

    def check_preconditions(self, env: Environment) -> None:
        if env.runtime.host_id:
            raise DeployerError(
                f"Environment '{env.name}' already has provider host {env.runtime.host_id} "
                "from an earlier 'provision'",
                "Run 'provision' again to finish it, or 'destroy' the environment first.",
                kind=ErrorKind.PRECONDITION_NOT_MET,
                environment=env.name,
                transition=self.transition.value,
            )

    def build_steps(self, env: Environment) -> list[Step]:
        return [WaitSshConnectivity(), VerifyCloudInitComplete()]

    def seed_facts(self, env: Environment) -> dict[str, Any]:
        return {"instance_ip": self.instance_ip}

    def apply_facts(self, env: Environment, facts: dict[str, Any]) -> None:
        env.runtime.instance_ip = self.instance_ip
        env.runtime.registered = True


class ConfigureHandler(TransitionHandler):
    transition = Transition.CONFIGURE

    def build_steps(self, env: Environment) -> list[Step]:
        return [VerifyCloudInitComplete(), InstallDocker(), InstallCompose()]


class ReleaseHandler(TransitionHandler):
    transition = Transition.RELEASE

    def build_steps(self, env: Environment) -> list[Step]:
        return [RenderTemplates(), CreateStorage(), DeployFiles()]


class RunHandler(TransitionHandler):
    transition = Transition.RUN

    def build_steps(self, env: Environment) -> list[Step]:
        return [StartServices(), CheckServiceHealth()]


HANDLERS: dict[Transition, type[TransitionHandler]] = {
    Transition.PROVISION: ProvisionHandler,
    Transition.CONFIGURE: ConfigureHandler,
    Transition.RELEASE: ReleaseHandler,
    Transition.RUN: RunHandler,
}


def run_transition(deployer: Deployer, transition: Transition, name: str) -> TransitionResult:
    """Run ``transition`` on environment ``name``."""
    return HANDLERS[transition](deployer).execute(name)


def register_environment(deployer: Deployer, name: str, instance_ip: str) -> TransitionResult:
    """Move ``name`` from created to provisioned using an existing host."""
    return RegisterHandler(deployer, instance_ip).execute(name)
