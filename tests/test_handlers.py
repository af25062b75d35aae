"""
Tests for the command handlers — lifecycle transitions, smoke test and
environment commands, run against the fake adapters.
"""

import json
import logging

import pytest
import yaml

from tracker_deployer.adapters.base import ProbeResult, ProviderError
from tracker_deployer.adapters.fake import FAKE_IP, FakeHostProvider
from tracker_deployer.core.errors import (
    ConfigViolationError,
    DeployerError,
    EnvironmentAlreadyExistsError,
    EnvironmentNotFoundError,
    IllegalTransitionError,
    LockContentionError,
    StepFailedError,
)
from tracker_deployer.core.lifecycle.state_machine import Transition
from tracker_deployer.core.models.outcome import ErrorKind
from tracker_deployer.core.models.stage import Stage
from tracker_deployer.core.persistence.lock import EnvironmentLock
from tracker_deployer.core.steps import InstallDocker
from tracker_deployer.core.steps.docker import COMPOSE_CHECK, DOCKER_CHECK
from tracker_deployer.core.use_cases import (
    SmokeTestHandler,
    create_environment,
    destroy_environment,
    list_environments,
    purge_environment,
    register_environment,
    render_environment,
    render_file,
    run_transition,
    show_environment,
    validate_file,
)
from tracker_deployer.core.use_cases import smoke_test
from tracker_deployer.core.use_cases.lifecycle import parse_instance_ip
from tracker_deployer.core.use_cases.smoke_test import smoke_test_steps
from tracker_deployer.core.validation.validator import UNIFORM_TLS_PROXY

LIFECYCLE = [Transition.PROVISION, Transition.CONFIGURE, Transition.RELEASE, Transition.RUN]


@pytest.fixture
def created(deployer, make_config):
    """An environment named 'staging' at the created stage."""
    return create_environment(deployer, make_config())


def _advance(deployer, upto):
    for transition in LIFECYCLE[: LIFECYCLE.index(upto) + 1]:
        run_transition(deployer, transition, "staging")


def _state_bytes(deployer):
    return deployer.store.state_path("staging").read_bytes()


# ── create ──────────────────────────────────────────────────────────


class TestCreate:
    def test_create_persists_created_stage(self, deployer, created):
        assert created.stage == Stage.CREATED
        assert deployer.store.load("staging").stage == Stage.CREATED
        entries = deployer.store.audit("staging").read_all()
        assert [(e.command, e.status) for e in entries] == [("create", "ok")]

    def test_duplicate_name(self, deployer, created, make_config):
        before = _state_bytes(deployer)
        with pytest.raises(EnvironmentAlreadyExistsError) as exc:
            create_environment(deployer, make_config())
        assert exc.value.kind == ErrorKind.ALREADY_EXISTS
        assert _state_bytes(deployer) == before

    def test_invalid_config_persists_nothing(self, deployer, make_config):
        config = make_config(
            http_trackers=[
                {"bind_address": "0.0.0.0:7070", "domain": "t.example.com", "use_tls_proxy": True},
                {"bind_address": "0.0.0.0:7071"},
            ],
            https={"admin_email": "admin@example.com"},
        )
        with pytest.raises(ConfigViolationError) as exc:
            create_environment(deployer, config)
        assert [v.rule for v in exc.value.violations] == [UNIFORM_TLS_PROXY]
        assert "7071" in exc.value.message
        assert not deployer.store.exists("staging")
        assert not deployer.store.environment_dir("staging").exists()


# ── Lifecycle transitions ───────────────────────────────────────────


class TestTransitions:
    def test_full_lifecycle(self, deployer, created, fake_remote, fake_probe):
        expected = {
            Transition.PROVISION: Stage.PROVISIONED,
            Transition.CONFIGURE: Stage.CONFIGURED,
            Transition.RELEASE: Stage.RELEASED,
            Transition.RUN: Stage.RUNNING,
        }
        for transition in LIFECYCLE:
            result = run_transition(deployer, transition, "staging")
            assert result.stage_after == expected[transition].value
            assert deployer.store.load("staging").stage == expected[transition]

        env = deployer.store.load("staging")
        assert env.runtime.instance_ip == FAKE_IP
        assert env.runtime.host_id == "torrust-tracker-vm-staging"
        assert env.failure is None
        assert fake_remote.uploads
        assert fake_probe.requests

        commands = [e.command for e in deployer.store.audit("staging").read_all()]
        assert commands == ["create", "provision", "configure", "release", "run"]

    def test_provision_steps(self, deployer, created):
        result = run_transition(deployer, Transition.PROVISION, "staging")
        assert result.completed_steps == [
            "create_host",
            "wait_for_host",
            "wait_ssh_connectivity",
            "verify_cloud_init_complete",
        ]
        assert result.to_dict()["stage_before"] == "created"

    def test_not_found(self, deployer):
        with pytest.raises(EnvironmentNotFoundError):
            run_transition(deployer, Transition.PROVISION, "ghost")
        assert not deployer.store.environment_dir("ghost").exists()

    @pytest.mark.parametrize("transition", [Transition.CONFIGURE, Transition.RELEASE, Transition.RUN])
    def test_illegal_transition_has_no_side_effects(self, deployer, created, fake_remote, transition):
        before = _state_bytes(deployer)
        with pytest.raises(IllegalTransitionError) as exc:
            run_transition(deployer, transition, "staging")
        assert exc.value.current == "created"
        assert exc.value.requested == transition.value
        assert _state_bytes(deployer) == before
        assert fake_remote.commands == []

    def test_provision_twice_is_illegal(self, deployer, created):
        _advance(deployer, Transition.PROVISION)
        with pytest.raises(IllegalTransitionError) as exc:
            run_transition(deployer, Transition.PROVISION, "staging")
        assert exc.value.allowed_from == "created"

    def test_lock_contention(self, deployer, created):
        before = _state_bytes(deployer)
        with EnvironmentLock(deployer.store.lock_path("staging"), "staging"):
            with pytest.raises(LockContentionError):
                run_transition(deployer, Transition.PROVISION, "staging")
        assert _state_bytes(deployer) == before

    def test_config_revalidated_before_running(self, deployer, created, fake_provider):
        path = deployer.store.state_path("staging")
        data = json.loads(path.read_text())
        data["config"]["tracker"]["http_trackers"].append({"bind_address": "0.0.0.0:7070"})
        path.write_text(json.dumps(data))

        with pytest.raises(ConfigViolationError) as exc:
            run_transition(deployer, Transition.PROVISION, "staging")
        assert exc.value.transition == "provision"
        assert fake_provider.call_log == []


class TestTransitionFailures:
    def test_configure_timeout_keeps_stage(self, deployer, created, fake_remote):
        _advance(deployer, Transition.PROVISION)
        fake_remote.time_out(DOCKER_CHECK)

        with pytest.raises(StepFailedError) as exc:
            run_transition(deployer, Transition.CONFIGURE, "staging")
        err = exc.value
        assert err.kind == ErrorKind.TIMEOUT
        assert err.step == "install_docker"
        assert (err.index, err.total) == (1, 3)
        assert err.transition == "configure"
        assert err.remediation_hint

        env = deployer.store.load("staging")
        assert env.stage == Stage.PROVISIONED
        failure = env.failure
        assert failure.transition == "configure"
        assert failure.at == Stage.PROVISIONED
        assert failure.step == "install_docker"
        assert failure.kind == ErrorKind.TIMEOUT
        assert failure.trace_id == err.trace_id

        last = deployer.store.audit("staging").read_recent(1)[0]
        assert (last.status, last.failed_step, last.error_kind) == ("failed", "install_docker", "timeout")

    def test_configure_retry_reruns_every_step(self, deployer, created, fake_remote):
        _advance(deployer, Transition.PROVISION)
        fake_remote.time_out(DOCKER_CHECK)
        with pytest.raises(StepFailedError):
            run_transition(deployer, Transition.CONFIGURE, "staging")

        fake_remote.clear()
        fake_remote.commands.clear()
        result = run_transition(deployer, Transition.CONFIGURE, "staging")

        assert result.completed_steps == ["verify_cloud_init_complete", "install_docker", "install_compose"]
        assert fake_remote.commands == [
            "test -f /var/lib/cloud/instance/boot-finished",
            DOCKER_CHECK,
            COMPOSE_CHECK,
        ]
        env = deployer.store.load("staging")
        assert env.stage == Stage.CONFIGURED
        assert env.failure is None

    def test_provision_failure_at_first_step(self, deployer, created, fake_provider):
        fake_provider.set_create_failure("quota exceeded")
        with pytest.raises(StepFailedError) as exc:
            run_transition(deployer, Transition.PROVISION, "staging")
        assert exc.value.to_dict()["step_index"] == 0
        assert exc.value.to_dict()["total_steps"] == 4

        env = deployer.store.load("staging")
        assert env.stage == Stage.CREATED
        assert env.failure.step == "create_host"

    def test_provision_failure_keeps_discovered_ip(self, deployer, created, fake_remote):
        fake_remote.fail("echo ok", exit_code=255, stderr="Connection refused")
        with pytest.raises(StepFailedError) as exc:
            run_transition(deployer, Transition.PROVISION, "staging")
        assert exc.value.step == "wait_ssh_connectivity"

        env = deployer.store.load("staging")
        assert env.stage == Stage.CREATED
        assert env.runtime.instance_ip == FAKE_IP

        fake_remote.clear()
        assert run_transition(deployer, Transition.PROVISION, "staging").stage_after == "provisioned"

    def test_run_health_failure(self, deployer, created, fake_probe):
        _advance(deployer, Transition.RELEASE)
        fake_probe.set_response(f"http://{FAKE_IP}:7070/health_check", ProbeResult(status=500))
        with pytest.raises(StepFailedError) as exc:
            run_transition(deployer, Transition.RUN, "staging")
        assert exc.value.kind == ErrorKind.PRECONDITION_NOT_MET
        assert deployer.store.load("staging").stage == Stage.RELEASED


# ── register ────────────────────────────────────────────────────────


class TestRegister:
    def test_register_existing_host(self, deployer, created, fake_provider, fake_remote):
        result = register_environment(deployer, "staging", " 192.168.1.100 ")
        assert result.transition == "register"
        assert result.stage_after == "provisioned"
        assert result.completed_steps == ["wait_ssh_connectivity", "verify_cloud_init_complete"]
        assert fake_provider.call_log == []
        assert "echo ok" in fake_remote.commands

        env = deployer.store.load("staging")
        assert env.stage == Stage.PROVISIONED
        assert env.runtime.instance_ip == "192.168.1.100"
        assert env.runtime.registered is True
        assert env.runtime.host_id is None
        assert deployer.store.audit("staging").read_recent(1)[0].command == "register"

    def test_lifecycle_continues_after_register(self, deployer, created):
        register_environment(deployer, "staging", "192.168.1.100")
        for transition in LIFECYCLE[1:]:
            run_transition(deployer, transition, "staging")
        env = deployer.store.load("staging")
        assert env.stage == Stage.RUNNING
        assert env.runtime.instance_ip == "192.168.1.100"

    def test_ip_is_normalised(self):
        assert parse_instance_ip("2001:DB8:0::1") == "2001:db8::1"
        assert parse_instance_ip("10.0.0.7\n") == "10.0.0.7"

    @pytest.mark.parametrize("ip", ["", "10.0.0", "host.example.com", "999.1.1.1"])
    def test_invalid_ip(self, deployer, created, ip):
        before = _state_bytes(deployer)
        with pytest.raises(DeployerError) as exc:
            register_environment(deployer, "staging", ip)
        assert exc.value.kind == ErrorKind.CONFIG_VIOLATION
        assert _state_bytes(deployer) == before

    def test_illegal_after_provision(self, deployer, created):
        _advance(deployer, Transition.PROVISION)
        with pytest.raises(IllegalTransitionError) as exc:
            register_environment(deployer, "staging", "192.168.1.100")
        assert exc.value.allowed_from == "created"
        assert deployer.store.load("staging").runtime.instance_ip == FAKE_IP

    def test_refused_when_provider_host_exists(self, deployer, created, fake_remote):
        fake_remote.fail("echo ok", exit_code=255, stderr="Connection refused")
        with pytest.raises(StepFailedError):
            run_transition(deployer, Transition.PROVISION, "staging")
        fake_remote.clear()

        with pytest.raises(DeployerError) as exc:
            register_environment(deployer, "staging", "192.168.1.100")
        assert exc.value.kind == ErrorKind.PRECONDITION_NOT_MET
        assert deployer.store.load("staging").stage == Stage.CREATED

    def test_ssh_failure_keeps_created(self, deployer, created, fake_remote):
        fake_remote.fail("echo ok", exit_code=255, stderr="Connection refused")
        with pytest.raises(StepFailedError) as exc:
            register_environment(deployer, "staging", "192.168.1.100")
        assert exc.value.step == "wait_ssh_connectivity"
        assert exc.value.transition == "register"

        env = deployer.store.load("staging")
        assert env.stage == Stage.CREATED
        assert env.failure.transition == "register"

    def test_cloud_init_not_finished(self, deployer, created, fake_remote):
        fake_remote.fail("boot-finished")
        with pytest.raises(StepFailedError) as exc:
            register_environment(deployer, "staging", "192.168.1.100")
        assert exc.value.step == "verify_cloud_init_complete"
        assert deployer.store.load("staging").stage == Stage.CREATED

    def test_provision_after_failed_register_owns_the_host(self, deployer, created, fake_remote):
        fake_remote.fail("echo ok", exit_code=255)
        with pytest.raises(StepFailedError):
            register_environment(deployer, "staging", "192.168.1.100")
        fake_remote.clear()

        run_transition(deployer, Transition.PROVISION, "staging")
        env = deployer.store.load("staging")
        assert env.runtime.registered is False
        assert env.runtime.instance_ip == FAKE_IP


# ── test (smoke check) ──────────────────────────────────────────────


class TestSmokeTest:
    def test_rejected_at_created(self, deployer, created):
        with pytest.raises(IllegalTransitionError) as exc:
            SmokeTestHandler(deployer).execute("staging")
        assert exc.value.requested == "test"
        assert exc.value.allowed_from == "provisioned"

    def test_does_not_write_the_record(self, deployer, created):
        _advance(deployer, Transition.CONFIGURE)
        before = _state_bytes(deployer)

        result = SmokeTestHandler(deployer).execute("staging")

        assert result.ok
        assert result.stage == "configured"
        assert result.pipeline.completed_steps == [
            "verify_cloud_init_complete",
            "verify_docker_installed",
            "verify_compose_installed",
        ]
        assert _state_bytes(deployer) == before
        assert deployer.store.load("staging").stage == Stage.CONFIGURED

    def test_failure_is_reported_not_raised(self, deployer, created, fake_remote):
        _advance(deployer, Transition.CONFIGURE)
        before = _state_bytes(deployer)
        fake_remote.fail(DOCKER_CHECK, exit_code=127)

        result = SmokeTestHandler(deployer).execute("staging")

        assert not result.ok
        assert result.pipeline.failed_step == "verify_docker_installed"
        assert result.pipeline.failure.kind == ErrorKind.PRECONDITION_NOT_MET
        assert _state_bytes(deployer) == before
        assert result.to_dict()["ok"] is False

    def test_running_checks_everything(self, deployer, created):
        _advance(deployer, Transition.RUN)
        result = SmokeTestHandler(deployer).execute("staging")
        assert result.ok
        assert result.pipeline.completed_steps[-2:] == ["verify_containers_running", "check_service_health"]

    def test_audited(self, deployer, created):
        _advance(deployer, Transition.PROVISION)
        SmokeTestHandler(deployer).execute("staging")
        last = deployer.store.audit("staging").read_recent(1)[0]
        assert last.command == "test"
        assert last.stage_before == last.stage_after == "provisioned"

    @pytest.mark.parametrize("stage", list(Stage))
    def test_only_validation_steps(self, stage):
        assert not any(step.mutates for step in smoke_test_steps(stage))

    def test_refuses_action_steps(self, deployer, created, monkeypatch):
        _advance(deployer, Transition.PROVISION)
        monkeypatch.setitem(smoke_test.STAGE_CHECKS, Stage.PROVISIONED, lambda: [InstallDocker()])
        with pytest.raises(DeployerError, match="read-only"):
            SmokeTestHandler(deployer).execute("staging")


# ── show / list / validate ──────────────────────────────────────────


class TestQueries:
    def test_show(self, deployer, created):
        data = show_environment(deployer, "staging")
        assert data["stage"] == "created"
        assert data["next"] == ["provision", "register"]
        assert data["recent"][0]["command"] == "create"
        assert "MyAccessToken" not in json.dumps(data)

    def test_show_failure(self, deployer, created, fake_provider):
        fake_provider.set_create_failure()
        with pytest.raises(StepFailedError):
            run_transition(deployer, Transition.PROVISION, "staging")
        assert show_environment(deployer, "staging")["failure"]["step"] == "create_host"

    def test_show_missing(self, deployer):
        with pytest.raises(EnvironmentNotFoundError):
            show_environment(deployer, "ghost")

    def test_list(self, deployer, created, make_config):
        create_environment(deployer, make_config(name="other"))
        deployer.store.state_path("other").write_text("{broken")
        rows = list_environments(deployer)
        assert [r["name"] for r in rows] == ["other", "staging"]
        assert rows[0]["error"]
        assert rows[1]["stage"] == "created"
        assert rows[1]["failed"] is False

    def test_validate_file(self, tmp_path, config_data):
        config_data["tracker"]["http_trackers"].append({"bind_address": "0.0.0.0:7070"})
        path = tmp_path / "env.yml"
        path.write_text(yaml.safe_dump(config_data))
        result = validate_file(path)
        assert not result.valid
        assert result.to_dict()["violations"][0]["rule"] == "duplicate-bind-address"


# ── destroy ─────────────────────────────────────────────────────────


class FailingDestroyProvider(FakeHostProvider):
    def destroy_host(self, environment, timeout):
        raise ProviderError("API unavailable")


class TestDestroy:
    def test_destroy_provisioned(self, deployer, created, fake_provider):
        _advance(deployer, Transition.PROVISION)
        result = destroy_environment(deployer, "staging")
        assert result.host_destroyed
        assert ("destroy_host", "staging") in fake_provider.call_log
        assert not deployer.store.exists("staging")

    def test_destroy_created_has_no_host(self, deployer, created, fake_provider):
        result = destroy_environment(deployer, "staging")
        assert not result.host_destroyed
        assert fake_provider.call_log == []

    def test_keep_host(self, deployer, created, fake_provider):
        _advance(deployer, Transition.PROVISION)
        result = destroy_environment(deployer, "staging", keep_host=True)
        assert not result.host_destroyed
        assert "staging" in fake_provider.hosts
        assert not deployer.store.exists("staging")

    def test_provider_failure_keeps_record(self, deployer, created):
        _advance(deployer, Transition.PROVISION)
        failing = FailingDestroyProvider()
        deployer.collaborators.providers["lxd"] = failing
        with pytest.raises(DeployerError) as exc:
            destroy_environment(deployer, "staging")
        assert exc.value.kind == ErrorKind.REMOTE_EXECUTION_FAILED
        assert deployer.store.exists("staging")

    def test_destroy_missing(self, deployer):
        with pytest.raises(EnvironmentNotFoundError):
            destroy_environment(deployer, "ghost")

    def test_registered_host_is_left_alone(self, deployer, created, fake_provider):
        register_environment(deployer, "staging", "192.168.1.100")
        result = destroy_environment(deployer, "staging")
        assert not result.host_destroyed
        assert fake_provider.call_log == []
        assert not deployer.store.exists("staging")

    def test_rejects_path_names(self, deployer, tmp_path):
        (tmp_path / "x").mkdir()
        with pytest.raises(DeployerError) as exc:
            destroy_environment(deployer, "../x")
        assert exc.value.kind == ErrorKind.CONFIG_VIOLATION
        assert (tmp_path / "x").is_dir()


# ── purge ───────────────────────────────────────────────────────────


class TestPurge:
    def test_removes_record_and_build_dir(self, deployer, created, fake_provider, settings):
        _advance(deployer, Transition.RELEASE)
        assert settings.build_path("staging").is_dir()

        result = purge_environment(deployer, "staging")
        assert not deployer.store.exists("staging")
        assert not deployer.store.environment_dir("staging").exists()
        assert not settings.build_path("staging").exists()
        assert len(result.to_dict()["removed"]) == 2
        assert ("destroy_host", "staging") not in fake_provider.call_log
        assert "staging" in fake_provider.hosts

    def test_without_build_dir(self, deployer, created, settings):
        result = purge_environment(deployer, "staging")
        assert result.removed == [str(deployer.store.environment_dir("staging"))]

    def test_purge_missing(self, deployer):
        with pytest.raises(EnvironmentNotFoundError):
            purge_environment(deployer, "ghost")


# ── render ──────────────────────────────────────────────────────────


class TestRender:
    def test_render_stored_environment(self, deployer, created, settings, fake_remote):
        before = _state_bytes(deployer)
        result = render_environment(deployer, "staging")

        assert result.output_dir == settings.build_path("staging")
        names = result.to_dict()["files"]
        assert "docker-compose.yml" in names
        assert ".env" in names
        env_file = result.output_dir / ".env"
        assert "MyAccessToken" in env_file.read_text()
        assert oct(env_file.stat().st_mode & 0o777) == "0o600"

        assert _state_bytes(deployer) == before
        assert fake_remote.commands == []
        assert fake_remote.uploads == []

    def test_render_into_output_dir(self, deployer, created, tmp_path):
        out = tmp_path / "out"
        result = render_environment(deployer, "staging", out)
        assert result.output_dir == out
        assert all(p.is_relative_to(out) for p in result.files)
        assert (out / "docker-compose.yml").is_file()

    def test_render_any_stage(self, deployer, created):
        _advance(deployer, Transition.RUN)
        assert render_environment(deployer, "staging").files

    def test_render_file_stores_nothing(self, deployer, tmp_path, config_data):
        path = tmp_path / "env.yml"
        path.write_text(yaml.safe_dump(config_data))
        result = render_file(deployer, path, tmp_path / "out")
        assert result.environment == "staging"
        assert (tmp_path / "out" / "docker-compose.yml").is_file()
        assert not deployer.store.exists("staging")

    def test_render_file_rejects_invalid_config(self, deployer, tmp_path, config_data):
        config_data["tracker"]["http_trackers"].append({"bind_address": "0.0.0.0:7070"})
        path = tmp_path / "env.yml"
        path.write_text(yaml.safe_dump(config_data))
        with pytest.raises(ConfigViolationError):
            render_file(deployer, path, tmp_path / "out")
        assert not (tmp_path / "out").exists()

    def test_render_missing(self, deployer):
        with pytest.raises(EnvironmentNotFoundError):
            render_environment(deployer, "ghost")


# ── Secrets ─────────────────────────────────────────────────────────


class TestNoSecretLeaks:
    def test_lifecycle_logs_are_redacted(self, deployer, created, caplog):
        with caplog.at_level(logging.DEBUG):
            _advance(deployer, Transition.RUN)
            SmokeTestHandler(deployer).execute("staging")
            show_environment(deployer, "staging")
        assert "MyAccessToken" not in caplog.text

    def test_error_output_is_redacted(self, deployer, created, fake_remote):
        _advance(deployer, Transition.PROVISION)
        fake_remote.time_out(DOCKER_CHECK)
        with pytest.raises(StepFailedError) as exc:
            run_transition(deployer, Transition.CONFIGURE, "staging")
        assert "MyAccessToken" not in json.dumps(exc.value.to_dict())

    def test_rendered_env_file_has_the_secret(self, deployer, created, settings):
        _advance(deployer, Transition.RELEASE)
        env_file = settings.build_path("staging") / ".env"
        assert "MyAccessToken" in env_file.read_text()
        assert oct(env_file.stat().st_mode & 0o777) == "0o600"
