"""
Tests for the host, docker, release and service steps.

Steps run against the fake adapters; every validation step is checked
for idempotence by running it twice.
"""

import pytest

from tracker_deployer.adapters.base import CommandResult, ProbeResult
from tracker_deployer.adapters.fake import FAKE_IP, FakeHostProvider, FakeRemoteExecutor
from tracker_deployer.core.config.settings import SKIP_DOCKER_INSTALL_ENV, Timeouts, skip_docker_install_from_env
from tracker_deployer.core.engine.step import StepContext
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
    VerifyComposeInstalled,
    VerifyContainersRunning,
    VerifyDockerInstalled,
    VerifyFilesDeployed,
    WaitForHost,
    WaitSshConnectivity,
)
from tracker_deployer.core.steps.docker import DOCKER_CHECK, DOCKER_INSTALL
from tracker_deployer.core.steps.services import expected_services, health_endpoints

TLS_TRACKERS = [
    {"bind_address": "0.0.0.0:7070", "domain": "t1.example.com", "use_tls_proxy": True},
]
HTTPS = {"admin_email": "admin@example.com"}


class MissingUntilInstalled(FakeRemoteExecutor):
    """Reports `check` as missing until some other command has run."""

    def __init__(self, check):
        super().__init__()
        self._check = check
        self._installed = False

    def run(self, command, timeout):
        if command == self._check and not self._installed:
            self.commands.append(command)
            return CommandResult(exit_code=127, stderr="docker: command not found")
        if command != self._check:
            self._installed = True
        return super().run(command, timeout)


@pytest.fixture
def remote():
    return FakeRemoteExecutor()


@pytest.fixture
def make_context(make_config, fake_provider, remote, fake_probe, tmp_path):
    """Factory: a StepContext for a config, optionally with a known IP."""

    def _make(config=None, ip=FAKE_IP, **kwargs):
        env = Environment.create(config or make_config())
        env.runtime.instance_ip = ip
        return StepContext(
            environment=env,
            provider=fake_provider,
            probe=fake_probe,
            remote_factory=lambda _env, _ip: remote,
            build_dir=tmp_path / "build",
            timeouts=Timeouts(host_ready=3, ssh_connect=3, poll_interval=1),
            sleep=lambda _s: None,
            **kwargs,
        )

    return _make


# ── Host ────────────────────────────────────────────────────────────


class TestHostSteps:
    def test_create_host_records_facts(self, make_context, fake_provider):
        ctx = make_context(ip=None)
        outcome = CreateHost().execute(ctx)
        assert outcome.ok
        assert ctx.facts["instance_ip"] == FAKE_IP
        assert ctx.facts["host_id"] == "torrust-tracker-vm-staging"
        assert fake_provider.call_log == [("create_host", "staging")]

    def test_create_host_is_idempotent(self, make_context, fake_provider):
        ctx = make_context(ip=None)
        CreateHost().execute(ctx)
        CreateHost().execute(ctx)
        assert len(fake_provider.hosts) == 1

    def test_create_host_provider_failure(self, make_context, fake_provider):
        fake_provider.set_create_failure("quota exceeded")
        outcome = CreateHost().execute(make_context(ip=None))
        assert outcome.kind == ErrorKind.REMOTE_EXECUTION_FAILED
        assert "quota exceeded" in outcome.message

    def test_wait_for_host_polls_until_running(self, make_context):
        provider = FakeHostProvider(pending_polls=2)
        ctx = make_context(ip=None)
        ctx.provider = provider
        CreateHost().execute(ctx)
        outcome = WaitForHost().execute(ctx)
        assert outcome.ok
        assert [c for c, _ in provider.call_log].count("host_status") == 3

    def test_wait_for_host_times_out(self, make_context):
        provider = FakeHostProvider(pending_polls=100)
        ctx = make_context(ip=None)
        ctx.provider = provider
        CreateHost().execute(ctx)
        outcome = WaitForHost().execute(ctx)
        assert outcome.kind == ErrorKind.TIMEOUT
        assert "starting" in outcome.message

    def test_wait_for_missing_host(self, make_context):
        outcome = WaitForHost().execute(make_context(ip=None))
        assert outcome.kind == ErrorKind.PRECONDITION_NOT_MET

    def test_ssh_connectivity(self, make_context, remote):
        outcome = WaitSshConnectivity().execute(make_context())
        assert outcome.ok
        assert remote.commands == ["echo ok"]

    def test_ssh_never_reachable_is_timeout(self, make_context, remote):
        remote.fail("echo ok", exit_code=255, stderr="Connection refused")
        outcome = WaitSshConnectivity().execute(make_context())
        assert outcome.kind == ErrorKind.TIMEOUT
        assert "Connection refused" in outcome.message
        assert len(remote.commands) == 3

    def test_cloud_init_check_vs_wait(self, make_context, remote):
        VerifyCloudInitComplete().execute(make_context())
        VerifyCloudInitComplete(wait=True).execute(make_context())
        assert "--wait" not in remote.commands[0]
        assert "cloud-init status --wait" in remote.commands[1]

    def test_cloud_init_not_finished(self, make_context, remote):
        remote.fail("boot-finished")
        outcome = VerifyCloudInitComplete().execute(make_context())
        assert outcome.kind == ErrorKind.PRECONDITION_NOT_MET

    def test_cloud_init_timeout_is_not_a_negative(self, make_context, remote):
        remote.time_out("boot-finished")
        outcome = VerifyCloudInitComplete().execute(make_context())
        assert outcome.kind == ErrorKind.TIMEOUT


# ── Docker ──────────────────────────────────────────────────────────


class TestDockerSteps:
    def test_already_installed_skips_install(self, make_context, remote):
        outcome = InstallDocker().execute(make_context())
        assert outcome.ok
        assert outcome.data["installed"] is False
        assert remote.commands == [DOCKER_CHECK]

    def test_installs_when_missing(self, make_context):
        missing = MissingUntilInstalled(DOCKER_CHECK)
        ctx = make_context()
        ctx.remote_factory = lambda _env, _ip: missing

        outcome = InstallDocker().execute(ctx)
        assert outcome.ok
        assert outcome.data["installed"] is True
        assert missing.commands == [DOCKER_CHECK, DOCKER_INSTALL, DOCKER_CHECK]

    def test_install_failure(self, make_context, remote):
        remote.fail(DOCKER_CHECK, exit_code=127)
        remote.fail("get.docker.com", stderr="E: Unable to locate package")
        outcome = InstallDocker().execute(make_context())
        assert outcome.kind == ErrorKind.REMOTE_EXECUTION_FAILED
        assert "Unable to locate package" in outcome.message

    def test_check_timeout(self, make_context, remote):
        remote.time_out(DOCKER_CHECK)
        outcome = InstallDocker().execute(make_context())
        assert outcome.kind == ErrorKind.TIMEOUT
        assert remote.commands == [DOCKER_CHECK]

    def test_compose_install_uses_its_own_check(self, make_context, remote):
        InstallCompose().execute(make_context())
        assert remote.commands == ["docker compose version"]

    def test_skip_install_touches_nothing(self, make_context, remote):
        ctx = make_context(skip_docker_install=True)
        for step in (InstallDocker(), InstallCompose(), VerifyDockerInstalled(), VerifyComposeInstalled()):
            outcome = step.execute(ctx)
            assert outcome.ok
            assert outcome.data["skipped"] is True
        assert remote.commands == []

    def test_verify_missing_docker(self, make_context, remote):
        remote.fail(DOCKER_CHECK, exit_code=127)
        outcome = VerifyDockerInstalled().execute(make_context())
        assert outcome.kind == ErrorKind.PRECONDITION_NOT_MET


class TestSkipDockerEnv:
    @pytest.mark.parametrize("value,expected", [("true", True), ("TRUE", True), ("1", False), ("", False)])
    def test_values(self, monkeypatch, value, expected):
        monkeypatch.setenv(SKIP_DOCKER_INSTALL_ENV, value)
        assert skip_docker_install_from_env() is expected

    def test_unset(self, monkeypatch):
        monkeypatch.delenv(SKIP_DOCKER_INSTALL_ENV, raising=False)
        assert skip_docker_install_from_env() is False


# ── Release ─────────────────────────────────────────────────────────


class TestReleaseSteps:
    def test_render_writes_build_dir(self, make_context):
        ctx = make_context()
        outcome = RenderTemplates().execute(ctx)
        assert outcome.ok
        assert (ctx.build_dir / "docker-compose.yml").is_file()
        assert (ctx.build_dir / ".env").is_file()
        assert "storage/tracker/etc/tracker.toml" in ctx.facts["rendered_files"]

    def test_create_storage(self, make_context, remote):
        assert CreateStorage().execute(make_context()).ok
        assert remote.commands[0].startswith("sudo mkdir -p")
        assert "/opt/torrust/storage/tracker/etc" in remote.commands[0]

    def test_deploy_requires_rendered_files(self, make_context):
        outcome = DeployFiles().execute(make_context())
        assert outcome.kind == ErrorKind.PRECONDITION_NOT_MET

    def test_deploy_uploads_every_file(self, make_context, remote):
        ctx = make_context()
        RenderTemplates().execute(ctx)
        assert DeployFiles().execute(ctx).ok
        remote_paths = [r for _, r in remote.uploads]
        assert "/opt/torrust/docker-compose.yml" in remote_paths
        assert "/opt/torrust/.env" in remote_paths

    def test_deploy_upload_failure(self, make_context, remote):
        ctx = make_context()
        RenderTemplates().execute(ctx)
        remote.fail_upload(".env", stderr="scp: No space left on device")
        outcome = DeployFiles().execute(ctx)
        assert outcome.kind == ErrorKind.REMOTE_EXECUTION_FAILED
        assert "No space left" in outcome.message

    def test_verify_files_reports_missing(self, make_context, remote):
        remote.respond("for f in", "/opt/torrust/.env\n")
        outcome = VerifyFilesDeployed().execute(make_context())
        assert outcome.kind == ErrorKind.PRECONDITION_NOT_MET
        assert "/opt/torrust/.env" in outcome.message


# ── Services ────────────────────────────────────────────────────────


class TestServiceSteps:
    def test_start_services(self, make_context, remote):
        assert StartServices().execute(make_context()).ok
        assert "docker compose up -d" in remote.commands[0]

    def test_start_failure(self, make_context, remote):
        remote.fail("docker compose up", stderr="pull access denied")
        outcome = StartServices().execute(make_context())
        assert outcome.kind == ErrorKind.REMOTE_EXECUTION_FAILED

    def test_expected_services(self, make_config):
        assert expected_services(make_config()) == ["tracker"]
        tls = make_config(http_trackers=TLS_TRACKERS, https=HTTPS)
        assert expected_services(tls) == ["tracker", "caddy"]

    def test_containers_running(self, make_context, remote):
        remote.respond("docker compose ps", "tracker\n")
        assert VerifyContainersRunning().execute(make_context()).ok

    def test_container_missing(self, make_context, make_config, remote):
        remote.respond("docker compose ps", "tracker\n")
        ctx = make_context(make_config(http_trackers=TLS_TRACKERS, https=HTTPS))
        outcome = VerifyContainersRunning().execute(ctx)
        assert outcome.kind == ErrorKind.PRECONDITION_NOT_MET
        assert "caddy" in outcome.message

    def test_health_endpoints_plain_and_tls(self, make_config):
        config = make_config(
            http_trackers=TLS_TRACKERS,
            http_api={"bind_address": "127.0.0.1:1212", "admin_token": "t"},
            https=HTTPS,
        )
        urls = [ep.url for ep in health_endpoints(config, "10.0.0.1")]
        assert urls == ["https://t1.example.com/health_check"]

    def test_health_endpoints_default(self, make_config):
        urls = [ep.url for ep in health_endpoints(make_config(), "10.0.0.1")]
        assert urls == [
            "http://10.0.0.1:1212/api/health_check",
            "http://10.0.0.1:7070/health_check",
        ]

    def test_health_ok(self, make_context, fake_probe):
        outcome = CheckServiceHealth().execute(make_context())
        assert outcome.ok
        assert len(fake_probe.requests) == 2

    def test_unhealthy_endpoint(self, make_context, fake_probe):
        fake_probe.set_response(f"http://{FAKE_IP}:7070/health_check", ProbeResult(status=503))
        outcome = CheckServiceHealth().execute(make_context())
        assert outcome.kind == ErrorKind.PRECONDITION_NOT_MET
        assert "HTTP 503" in outcome.message

    def test_probe_timeout(self, make_context, fake_probe):
        fake_probe.set_response(
            f"http://{FAKE_IP}:1212/api/health_check", ProbeResult(timed_out=True, error="timed out")
        )
        outcome = CheckServiceHealth().execute(make_context())
        assert outcome.kind == ErrorKind.TIMEOUT


# ── Idempotence ─────────────────────────────────────────────────────


class TestValidationIdempotence:
    @pytest.mark.parametrize(
        "step",
        [
            VerifyCloudInitComplete(),
            VerifyDockerInstalled(),
            VerifyComposeInstalled(),
            VerifyFilesDeployed(),
            VerifyContainersRunning(),
            CheckServiceHealth(),
            WaitSshConnectivity(),
        ],
        ids=lambda s: s.step_id,
    )
    def test_rerun_reports_same_success(self, make_context, remote, step):
        remote.respond("docker compose ps", "tracker\n")
        ctx = make_context()
        first = step.execute(ctx)
        second = step.execute(ctx)
        assert first.ok and second.ok
        assert first.detail == second.detail
        assert not step.mutates

    def test_render_twice_leaves_files_unchanged(self, make_context):
        ctx = make_context()
        RenderTemplates().execute(ctx)
        compose = ctx.build_dir / "docker-compose.yml"
        before = compose.stat().st_mtime_ns
        assert RenderTemplates().execute(ctx).ok
        assert compose.stat().st_mtime_ns == before
