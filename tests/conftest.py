"""
Shared test fixtures and configuration.
"""

import copy
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from tracker_deployer.adapters.fake import FakeHostProvider, FakeHttpProbe, FakeRemoteExecutor
from tracker_deployer.adapters.registry import Collaborators
from tracker_deployer.core.config.settings import DeployerSettings, Timeouts
from tracker_deployer.core.models.environment import EnvironmentConfig
from tracker_deployer.core.persistence.store import EnvironmentStore
from tracker_deployer.core.use_cases.base import Deployer

BASE_CONFIG: dict[str, Any] = {
    "name": "staging",
    "ssh_credentials": {
        "private_key_path": "fixtures/testing_rsa",
        "public_key_path": "fixtures/testing_rsa.pub",
    },
    "provider": {"provider": "lxd", "profile_name": "torrust-profile-staging"},
    "tracker": {
        "udp_trackers": [{"bind_address": "0.0.0.0:6969"}],
        "http_trackers": [{"bind_address": "0.0.0.0:7070"}],
        "http_api": {"bind_address": "0.0.0.0:1212", "admin_token": "MyAccessToken"},
    },
}


def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def config_data() -> dict[str, Any]:
    """A fresh, valid config mapping (mutable copy)."""
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def make_config() -> Callable[..., EnvironmentConfig]:
    """Factory: ``make_config(http_trackers=[...], https={...}, name=...)``."""

    def _make(**overrides: Any) -> EnvironmentConfig:
        data = copy.deepcopy(BASE_CONFIG)
        for key, value in overrides.items():
            if key in ("udp_trackers", "http_trackers", "http_api", "health_check_api", "core"):
                data["tracker"][key] = value
            else:
                data[key] = value
        return EnvironmentConfig.model_validate(data)

    return _make


@pytest.fixture
def fake_provider() -> FakeHostProvider:
    return FakeHostProvider()


@pytest.fixture
def fake_remote() -> FakeRemoteExecutor:
    remote = FakeRemoteExecutor()
    remote.respond("docker compose ps", "tracker\n")
    return remote


@pytest.fixture
def fake_probe() -> FakeHttpProbe:
    return FakeHttpProbe()


@pytest.fixture
def settings(tmp_path: Path) -> DeployerSettings:
    return DeployerSettings(
        data_dir=tmp_path / "data",
        build_dir=tmp_path / "build",
        timeouts=Timeouts(host_ready=3, ssh_connect=3, poll_interval=1),
        lock_attempts=2,
        skip_docker_install=False,
    )


@pytest.fixture
def deployer(
    settings: DeployerSettings,
    fake_provider: FakeHostProvider,
    fake_remote: FakeRemoteExecutor,
    fake_probe: FakeHttpProbe,
) -> Deployer:
    """Deployer wired to in-memory fakes under tmp_path."""
    return Deployer(
        store=EnvironmentStore(settings.data_dir, lock_attempts=settings.lock_attempts, sleep=_no_sleep),
        settings=settings,
        collaborators=Collaborators.fake(provider=fake_provider, remote=fake_remote, probe=fake_probe),
        sleep=_no_sleep,
    )
