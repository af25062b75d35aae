"""
Service steps — start the stack and check it answers.

    start_services             action      docker compose up -d
    verify_containers_running  validation  compose reports services running
    check_service_health       validation  HTTP health endpoints answer 2xx
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tracker_deployer.core.engine.step import Step, StepContext
from tracker_deployer.core.models.environment import EnvironmentConfig
from tracker_deployer.core.models.outcome import ErrorKind, StepOutcome
from tracker_deployer.core.rendering import REMOTE_DEPLOY_DIR
from tracker_deployer.core.validation.validator import parse_bind_address

logger = logging.getLogger(__name__)


class StartServices(Step):
    step_id = "start_services"
    description = "Start the service stack"
    mutates = True
    requires = ("remote",)

    def execute(self, context: StepContext) -> StepOutcome:
        remote = context.remote
        assert remote is not None
        result = remote.run(
            f"cd {REMOTE_DEPLOY_DIR} && docker compose up -d --remove-orphans",
            timeout=context.timeouts.compose_up,
        )
        if not result.ok:
            return self.command_failed(
                result,
                "docker compose up",
                f"Inspect 'docker compose logs' in {REMOTE_DEPLOY_DIR} on the host, then run 'run' again.",
            )
        return self.ok("services started")


def expected_services(config: EnvironmentConfig) -> list[str]:
    services = ["tracker"]
    if config.tracker.uses_tls_proxy():
        services.append("caddy")
    if config.tracker.core.database.driver == "mysql":
        services.append("mysql")
    return services


class VerifyContainersRunning(Step):
    step_id = "verify_containers_running"
    description = "Verify service containers are running"
    requires = ("remote",)

    def execute(self, context: StepContext) -> StepOutcome:
        remote = context.remote
        assert remote is not None
        result = remote.run(
            f"cd {REMOTE_DEPLOY_DIR} && docker compose ps --status running --services",
            timeout=context.timeouts.command,
        )
        if not result.ok:
            return self.command_failed(
                result,
                "docker compose ps",
                "Check that Docker is running on the host.",
                negative_kind=ErrorKind.PRECONDITION_NOT_MET,
            )
        running = {line.strip() for line in result.stdout.splitlines() if line.strip()}
        missing = [s for s in expected_services(context.environment.config) if s not in running]
        if missing:
            return self.fail(
                ErrorKind.PRECONDITION_NOT_MET,
                f"Not running: {', '.join(missing)}",
                f"Inspect 'docker compose logs' in {REMOTE_DEPLOY_DIR} on the host.",
            )
        return self.ok(f"running: {', '.join(sorted(running))}")


# ── Health ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class HealthEndpoint:
    service: str
    url: str


def health_endpoints(config: EnvironmentConfig, instance_ip: str) -> list[HealthEndpoint]:
    """Externally reachable health URLs. Loopback-bound services are skipped."""
    tracker = config.tracker
    endpoints = []

    api = tracker.http_api
    if api.tls_enabled and api.domain:
        endpoints.append(HealthEndpoint("HTTP API", f"https://{api.domain}/api/health_check"))
    elif not _is_loopback(api.bind_address):
        endpoints.append(
            HealthEndpoint("HTTP API", f"http://{instance_ip}:{api.port}/api/health_check")
        )

    for i, http in enumerate(tracker.http_trackers, start=1):
        label = f"HTTP Tracker #{i}"
        if http.tls_enabled and http.domain:
            endpoints.append(HealthEndpoint(label, f"https://{http.domain}/health_check"))
        elif not _is_loopback(http.bind_address):
            endpoints.append(
                HealthEndpoint(label, f"http://{instance_ip}:{http.port}/health_check")
            )
    return endpoints


def _is_loopback(bind_address: str) -> bool:
    ip, _ = parse_bind_address(bind_address)
    return ip is not None and ip.is_loopback


class CheckServiceHealth(Step):
    step_id = "check_service_health"
    description = "Probe service health endpoints"
    requires = ("probe", "instance_ip")

    def execute(self, context: StepContext) -> StepOutcome:
        assert context.probe is not None and context.instance_ip is not None
        endpoints = health_endpoints(context.environment.config, context.instance_ip)

        failures = []
        timed_out = []
        for ep in endpoints:
            result = context.probe.get(ep.url, timeout=context.timeouts.http_probe)
            if result.ok:
                logger.debug("Healthy: %s (%s)", ep.service, ep.url)
                continue
            if result.timed_out:
                timed_out.append(ep)
            else:
                reason = f"HTTP {result.status}" if result.status is not None else result.error
                failures.append(f"{ep.service} {ep.url} ({reason})")

        if failures:
            return self.fail(
                ErrorKind.PRECONDITION_NOT_MET,
                "Unhealthy: " + "; ".join(failures),
                "Inspect 'docker compose logs tracker' on the host; for TLS endpoints "
                "check that DNS points at the host.",
            )
        if timed_out:
            return self.fail(
                ErrorKind.TIMEOUT,
                "No answer from: " + ", ".join(f"{ep.service} {ep.url}" for ep in timed_out),
                "Services may still be starting, or a firewall blocks the port; retry shortly.",
            )
        return self.ok(f"{len(endpoints)} endpoints healthy", checked=[ep.url for ep in endpoints])
