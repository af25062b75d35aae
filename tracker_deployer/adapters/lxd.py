"""
LXD host provider — local virtual machines through the ``lxc`` CLI.

    create_host   lxc launch <image> <name> --vm --profile <profile>
    host_status   lxc list <name> --format json
    destroy_host  lxc delete --force <name>
"""

from __future__ import annotations

import json
import logging
from typing import Any

from tracker_deployer.adapters.base import HostInfo, HostProvider, ProviderError, ProviderTimeout
from tracker_deployer.adapters.cloud_init import read_public_key, render_user_data
from tracker_deployer.adapters.process import run_process
from tracker_deployer.core.models.environment import Environment, LxdProvider

logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "ubuntu:24.04"


class LxdHostProvider(HostProvider):
    def __init__(self, image: str = DEFAULT_IMAGE, lxc: str = "lxc"):
        self._image = image
        self._lxc = lxc

    @property
    def name(self) -> str:
        return "lxd"

    def _profile(self, environment: Environment) -> str:
        provider = environment.config.provider
        if not isinstance(provider, LxdProvider):
            raise ProviderError(f"environment '{environment.name}' is not an lxd environment")
        return provider.profile_name

    def _lxc_run(self, args: list[str], timeout: float) -> str:
        result = run_process([self._lxc, *args], timeout)
        if result.timed_out:
            raise ProviderTimeout(f"lxc {args[0]} timed out after {timeout:.0f}s")
        if not result.ok:
            raise ProviderError(f"lxc {args[0]} failed: {result.stderr.strip() or result.exit_code}")
        return result.stdout

    def host_status(self, environment: Environment, timeout: float) -> HostInfo:
        name = environment.config.instance_name
        raw = self._lxc_run(["list", name, "--format", "json"], timeout)
        try:
            instances = json.loads(raw or "[]")
        except json.JSONDecodeError as e:
            raise ProviderError(f"unexpected lxc output: {e}") from e

        for inst in instances:
            if inst.get("name") == name:
                return HostInfo(
                    host_id=name,
                    status=str(inst.get("status", "unknown")).lower(),
                    ip=_ipv4(inst),
                )
        return HostInfo(host_id=name, status="absent")

    def create_host(self, environment: Environment, timeout: float) -> HostInfo:
        existing = self.host_status(environment, timeout)
        if existing.status != "absent":
            logger.info("Instance %s already exists (%s)", existing.host_id, existing.status)
            return existing

        name = environment.config.instance_name
        creds = environment.config.ssh_credentials
        try:
            public_key = read_public_key(creds)
        except OSError as e:
            raise ProviderError(f"cannot read SSH public key {creds.public_key_path}: {e}") from e

        self._lxc_run(
            [
                "launch",
                self._image,
                name,
                "--vm",
                "--profile",
                self._profile(environment),
                "--config",
                f"cloud-init.user-data={render_user_data(creds, public_key)}",
            ],
            timeout,
        )
        logger.info("Launched instance %s", name)
        return self.host_status(environment, timeout)

    def destroy_host(self, environment: Environment, timeout: float) -> None:
        if self.host_status(environment, timeout).status == "absent":
            return
        self._lxc_run(["delete", "--force", environment.config.instance_name], timeout)


def _ipv4(instance: dict[str, Any]) -> str | None:
    network = (instance.get("state") or {}).get("network") or {}
    for iface, data in network.items():
        if iface == "lo":
            continue
        for addr in data.get("addresses", []):
            if addr.get("family") == "inet" and addr.get("scope") == "global":
                return addr.get("address")
    return None
