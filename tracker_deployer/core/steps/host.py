"""
Host steps — create the host and wait until it is usable.

    create_host                 action       provider creates (or finds) the VM
    wait_for_host               validation   provider reports running + IP
    wait_ssh_connectivity       validation   SSH accepts a trivial command
    verify_cloud_init_complete  validation   first-boot setup has finished
"""

from __future__ import annotations

import logging
import math

from tracker_deployer.adapters.base import ProviderError, ProviderTimeout
from tracker_deployer.core.engine.step import Step, StepContext
from tracker_deployer.core.models.outcome import ErrorKind, StepOutcome

logger = logging.getLogger(__name__)


def _attempts(total: float, interval: float) -> int:
    """How many polls fit in ``total`` seconds at ``interval`` spacing."""
    if interval <= 0:
        return 1
    return max(1, math.ceil(total / interval))


class CreateHost(Step):
    """Ask the provider for the host. Returns the existing host if there is one."""

    step_id = "create_host"
    description = "Create the virtual machine"
    mutates = True
    requires = ("provider",)

    def execute(self, context: StepContext) -> StepOutcome:
        assert context.provider is not None
        try:
            info = context.provider.create_host(context.environment, context.timeouts.provider)
        except ProviderTimeout as e:
            return self.fail(
                ErrorKind.TIMEOUT,
                f"Provider '{context.provider.name}' did not answer: {e}",
                "The provider may be overloaded; run 'provision' again.",
            )
        except ProviderError as e:
            return self.fail(
                ErrorKind.REMOTE_EXECUTION_FAILED,
                f"Provider '{context.provider.name}' could not create the host: {e}",
                "Check provider credentials and quota, then run 'provision' again.",
            )

        context.facts["host_id"] = info.host_id
        if info.ip:
            context.facts["instance_ip"] = info.ip
        return self.ok(f"host {info.host_id} ({info.status})", host_id=info.host_id)


class WaitForHost(Step):
    """Poll the provider until the host is running and has an IP."""

    step_id = "wait_for_host"
    description = "Wait for the host to report running"
    requires = ("provider",)

    def execute(self, context: StepContext) -> StepOutcome:
        assert context.provider is not None
        timeouts = context.timeouts
        attempts = _attempts(timeouts.host_ready, timeouts.poll_interval)
        last_status = "unknown"

        for attempt in range(1, attempts + 1):
            try:
                info = context.provider.host_status(context.environment, timeouts.provider)
            except ProviderTimeout as e:
                return self.fail(
                    ErrorKind.TIMEOUT,
                    f"Provider status query timed out: {e}",
                    "Run 'provision' again; the host may already exist.",
                )
            except ProviderError as e:
                return self.fail(
                    ErrorKind.REMOTE_EXECUTION_FAILED,
                    f"Provider status query failed: {e}",
                    "Check provider connectivity, then run 'provision' again.",
                )

            if info.status == "absent":
                return self.fail(
                    ErrorKind.PRECONDITION_NOT_MET,
                    "Provider reports no host for this environment",
                    "The host was removed outside the deployer; run 'provision' again to recreate it.",
                )
            if info.running:
                context.facts["instance_ip"] = info.ip
                context.facts["host_id"] = info.host_id
                return self.ok(f"running at {info.ip}", instance_ip=info.ip)

            last_status = info.status
            logger.debug("Host not ready (%s), poll %d/%d", info.status, attempt, attempts)
            if attempt < attempts:
                context.sleep(timeouts.poll_interval)

        return self.fail(
            ErrorKind.TIMEOUT,
            f"Host did not reach 'running' within {timeouts.host_ready:.0f}s (last: {last_status})",
            "Check the host in the provider console, then run 'provision' again.",
        )


class WaitSshConnectivity(Step):
    step_id = "wait_ssh_connectivity"
    description = "Wait for SSH to accept connections"
    requires = ("remote",)

    def execute(self, context: StepContext) -> StepOutcome:
        remote = context.remote
        assert remote is not None
        timeouts = context.timeouts
        per_try = min(timeouts.command, timeouts.ssh_connect)
        attempts = _attempts(timeouts.ssh_connect, timeouts.poll_interval)

        result = None
        for attempt in range(1, attempts + 1):
            result = remote.run("echo ok", timeout=per_try)
            if result.ok:
                return self.ok(f"SSH reachable at {context.instance_ip}")
            logger.debug("SSH not ready, attempt %d/%d", attempt, attempts)
            if attempt < attempts:
                context.sleep(timeouts.poll_interval)

        detail = result.stderr.strip() if result is not None else ""
        return self.fail(
            ErrorKind.TIMEOUT,
            f"SSH to {context.instance_ip} not available within {timeouts.ssh_connect:.0f}s"
            + (f": {detail}" if detail else ""),
            "Check the SSH key paths and that port 22 is reachable, then retry.",
        )


class VerifyCloudInitComplete(Step):
    """Check that cloud-init has finished.

    With ``wait=True`` the remote side blocks until cloud-init is done
    (used right after provisioning); otherwise it only checks.
    """

    step_id = "verify_cloud_init_complete"
    description = "Verify cloud-init has completed"
    requires = ("remote",)

    def __init__(self, wait: bool = False):
        self.wait = wait

    def execute(self, context: StepContext) -> StepOutcome:
        remote = context.remote
        assert remote is not None
        if self.wait:
            command = "cloud-init status --wait > /dev/null && test -f /var/lib/cloud/instance/boot-finished"
            timeout = context.timeouts.cloud_init
        else:
            command = "test -f /var/lib/cloud/instance/boot-finished"
            timeout = context.timeouts.command

        result = remote.run(command, timeout=timeout)
        if result.ok:
            return self.ok("cloud-init complete")
        return self.command_failed(
            result,
            "cloud-init completion check",
            "cloud-init has not finished; wait a few minutes or inspect "
            "/var/log/cloud-init-output.log on the host.",
            negative_kind=ErrorKind.PRECONDITION_NOT_MET,
        )
