"""
Docker steps — install and verify Docker Engine and the Compose plugin.

The install steps check first and only install when the check fails,
so a re-run against a configured host changes nothing.

``TRACKER_DEPLOYER_SKIP_DOCKER_INSTALL=true`` makes all four steps
report success without touching the host (CI containers that cannot
run Docker-in-Docker).
"""

from __future__ import annotations

import logging

from tracker_deployer.core.engine.step import Step, StepContext
from tracker_deployer.core.models.outcome import ErrorKind, StepOutcome

logger = logging.getLogger(__name__)

DOCKER_CHECK = "docker --version"
DOCKER_INSTALL = (
    "curl -fsSL https://get.docker.com -o /tmp/get-docker.sh"
    " && sudo sh /tmp/get-docker.sh"
    " && sudo usermod -aG docker \"$USER\""
)

COMPOSE_CHECK = "docker compose version"
COMPOSE_INSTALL = (
    "sudo apt-get update -qq"
    " && sudo DEBIAN_FRONTEND=noninteractive apt-get install -y -qq docker-compose-plugin"
)

_SKIPPED = "skipped (TRACKER_DEPLOYER_SKIP_DOCKER_INSTALL)"


class _EnsureInstalled(Step):
    """Check → install → re-check."""

    mutates = True
    requires = ("remote",)

    check_command: str = ""
    install_command: str = ""
    component: str = ""

    def execute(self, context: StepContext) -> StepOutcome:
        if context.skip_docker_install:
            logger.info("%s: %s", self.step_id, _SKIPPED)
            return self.ok(_SKIPPED, skipped=True)

        remote = context.remote
        assert remote is not None
        timeouts = context.timeouts

        check = remote.run(self.check_command, timeout=timeouts.command)
        if check.timed_out:
            return self.command_failed(
                check,
                f"{self.component} check",
                "The host is not answering in time; run 'configure' again.",
            )
        if check.ok:
            return self.ok(f"{self.component} already installed: {check.output}", installed=False)

        logger.info("Installing %s on %s", self.component, context.instance_ip)
        install = remote.run(self.install_command, timeout=timeouts.install)
        if not install.ok:
            return self.command_failed(
                install,
                f"{self.component} installation",
                "Inspect the host's package manager state, then run 'configure' again.",
            )

        verify = remote.run(self.check_command, timeout=timeouts.command)
        if not verify.ok:
            return self.command_failed(
                verify,
                f"{self.component} post-install check",
                f"{self.component} was installed but does not run; inspect the host.",
            )
        return self.ok(f"{self.component} installed: {verify.output}", installed=True)


class InstallDocker(_EnsureInstalled):
    step_id = "install_docker"
    description = "Install Docker Engine"
    check_command = DOCKER_CHECK
    install_command = DOCKER_INSTALL
    component = "Docker"


class InstallCompose(_EnsureInstalled):
    step_id = "install_compose"
    description = "Install Docker Compose plugin"
    check_command = COMPOSE_CHECK
    install_command = COMPOSE_INSTALL
    component = "Docker Compose"


class _VerifyInstalled(Step):
    requires = ("remote",)

    check_command: str = ""
    component: str = ""

    def execute(self, context: StepContext) -> StepOutcome:
        if context.skip_docker_install:
            return self.ok(_SKIPPED, skipped=True)
        remote = context.remote
        assert remote is not None
        result = remote.run(self.check_command, timeout=context.timeouts.command)
        if result.ok:
            return self.ok(f"{self.component}: {result.output}")
        return self.command_failed(
            result,
            f"{self.component} check",
            f"{self.component} is missing; the recorded stage says it should be installed. "
            "Re-run 'configure' from a provisioned environment or recreate the host.",
            negative_kind=ErrorKind.PRECONDITION_NOT_MET,
        )


class VerifyDockerInstalled(_VerifyInstalled):
    step_id = "verify_docker_installed"
    description = "Verify Docker Engine is installed"
    check_command = DOCKER_CHECK
    component = "Docker"


class VerifyComposeInstalled(_VerifyInstalled):
    step_id = "verify_compose_installed"
    description = "Verify Docker Compose plugin is installed"
    check_command = COMPOSE_CHECK
    component = "Docker Compose"
