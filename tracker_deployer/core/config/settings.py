"""
Runtime settings — where things live and how long to wait.

These are deployer settings, not environment configuration: the CLI
builds them from its flags. The only value read from the process
environment is the CI bypass for Docker installation; no configuration
or secret is ever injected through environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

SKIP_DOCKER_INSTALL_ENV = "TRACKER_DEPLOYER_SKIP_DOCKER_INSTALL"

DEFAULT_DATA_DIR = "data"
DEFAULT_BUILD_DIR = "build"


class Timeouts(BaseModel):
    """Deadlines (seconds) for every blocking operation."""

    provider: float = 300.0
    host_ready: float = 300.0
    ssh_connect: float = 120.0
    cloud_init: float = 600.0
    command: float = 60.0
    install: float = 600.0
    upload: float = 60.0
    compose_up: float = 300.0
    http_probe: float = 10.0
    poll_interval: float = 5.0


def skip_docker_install_from_env() -> bool:
    """Whether the CI bypass variable is set to ``true``."""
    return os.environ.get(SKIP_DOCKER_INSTALL_ENV, "").strip().lower() == "true"


class DeployerSettings(BaseModel):
    """Settings for one CLI invocation."""

    data_dir: Path = Path(DEFAULT_DATA_DIR)
    build_dir: Path = Path(DEFAULT_BUILD_DIR)
    timeouts: Timeouts = Field(default_factory=Timeouts)

    # Per-environment lock acquisition
    lock_attempts: int = 5
    lock_base_delay: float = 0.2
    lock_max_delay: float = 2.0

    skip_docker_install: bool = Field(default_factory=skip_docker_install_from_env)

    def environment_dir(self, name: str) -> Path:
        return self.data_dir / name

    def build_path(self, name: str) -> Path:
        return self.build_dir / name
