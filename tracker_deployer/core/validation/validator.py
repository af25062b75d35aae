"""
Configuration validator — cross-field rules over a parsed config.

Pydantic takes care of shapes and types. Everything that relates one
field to another (uniform TLS across HTTP trackers, bind address
collisions, the HTTPS section being present exactly when needed) is
checked here, as pure functions over literal values.

Validation is all-or-nothing and exhaustive: every rule runs and every
offending entry is reported, so a user can fix the file in one pass.

    violations = validate_config(config)      # [] means valid
    ensure_valid(config)                      # raises ConfigViolationError
"""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from tracker_deployer.core.errors import ConfigViolationError
from tracker_deployer.core.models.environment import EnvironmentConfig, check_environment_name

logger = logging.getLogger(__name__)


# ── Rule identifiers ────────────────────────────────────────────────

UNIFORM_TLS_PROXY = "uniform-tls-proxy"
EMPTY_BIND_ADDRESS = "empty-bind-address"
DUPLICATE_BIND_ADDRESS = "duplicate-bind-address"
INVALID_BIND_ADDRESS = "invalid-bind-address"
DYNAMIC_PORT = "dynamic-port"
TLS_DOMAIN_MISSING = "tls-domain-missing"
TLS_ON_LOCALHOST = "tls-on-localhost"
HTTPS_SECTION = "https-section"
INVALID_NAME = "invalid-environment-name"


# ── Result types ────────────────────────────────────────────────────


@dataclass(frozen=True)
class OffendingEntry:
    """One service entry that caused a violation."""

    service: str
    bind_address: str
    domain: str | None = None
    port: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "bind_address": self.bind_address,
            "domain": self.domain,
            "port": self.port,
        }


@dataclass(frozen=True)
class ConfigViolation:
    """A structured rejection: which rule, which entries, how to fix."""

    rule: str
    message: str
    offending: list[OffendingEntry] = field(default_factory=list)
    remediation_hint: str = ""

    @property
    def ports(self) -> list[int]:
        return [e.port for e in self.offending if e.port is not None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule,
            "message": self.message,
            "offending": [e.to_dict() for e in self.offending],
            "remediation_hint": self.remediation_hint,
        }


@dataclass(frozen=True)
class _Service:
    """Flattened view of one listening service."""

    label: str
    protocol: str  # "udp" | "tcp"
    bind_address: str
    domain: str | None = None
    use_tls_proxy: bool = False
    is_http_tracker: bool = False

    def entry(self, port: int | None = None) -> OffendingEntry:
        return OffendingEntry(
            service=self.label,
            bind_address=self.bind_address,
            domain=self.domain,
            port=port if port is not None else parse_bind_address(self.bind_address)[1],
        )


# ── Bind address parsing ────────────────────────────────────────────


def parse_bind_address(
    value: str,
) -> tuple[ipaddress.IPv4Address | ipaddress.IPv6Address | None, int | None]:
    """Parse ``IP:PORT`` or ``[IPv6]:PORT``.

    Returns ``(None, None)`` when the value cannot be parsed; a port
    outside ``0..65535`` counts as unparseable.
    """
    host, sep, port_text = value.strip().rpartition(":")
    if not sep or not host or not port_text.isdigit():
        return None, None
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return None, None
    port = int(port_text)
    if port > 65535:
        return None, None
    return ip, port


def _services(config: EnvironmentConfig) -> list[_Service]:
    tracker = config.tracker
    services: list[_Service] = []
    for i, udp in enumerate(tracker.udp_trackers, start=1):
        services.append(_Service(f"UDP Tracker #{i}", "udp", udp.bind_address))
    for i, http in enumerate(tracker.http_trackers, start=1):
        services.append(
            _Service(
                f"HTTP Tracker #{i}",
                "tcp",
                http.bind_address,
                domain=http.domain,
                use_tls_proxy=http.tls_enabled,
                is_http_tracker=True,
            )
        )
    services.append(
        _Service(
            "HTTP API",
            "tcp",
            tracker.http_api.bind_address,
            domain=tracker.http_api.domain,
            use_tls_proxy=tracker.http_api.tls_enabled,
        )
    )
    services.append(_Service("Health Check API", "tcp", tracker.health_check_api.bind_address))
    return services


# ── Rules ───────────────────────────────────────────────────────────


def check_uniform_tls_proxy(config: EnvironmentConfig) -> list[ConfigViolation]:
    """All HTTP trackers agree on ``use_tls_proxy`` (absent means false)."""
    trackers = [s for s in _services(config) if s.is_http_tracker]
    with_tls = [s for s in trackers if s.use_tls_proxy]
    if not with_tls or len(with_tls) == len(trackers):
        return []

    non_conforming = [s for s in trackers if not s.use_tls_proxy]
    entries = [s.entry() for s in non_conforming]
    ports = ", ".join(str(e.port) if e.port is not None else e.bind_address for e in entries)
    return [
        ConfigViolation(
            rule=UNIFORM_TLS_PROXY,
            message=(
                f"{len(with_tls)} of {len(trackers)} HTTP trackers use the TLS proxy; "
                f"non-conforming: {ports}"
            ),
            offending=entries,
            remediation_hint=(
                "Set use_tls_proxy: true for all HTTP trackers, or remove it from all."
            ),
        )
    ]


def check_bind_addresses(config: EnvironmentConfig) -> list[ConfigViolation]:
    """Empty, unparseable and port-0 bind addresses."""
    empty: list[OffendingEntry] = []
    invalid: list[OffendingEntry] = []
    dynamic: list[OffendingEntry] = []

    for svc in _services(config):
        if not svc.bind_address.strip():
            empty.append(OffendingEntry(svc.label, svc.bind_address, svc.domain))
            continue
        ip, port = parse_bind_address(svc.bind_address)
        if ip is None:
            invalid.append(OffendingEntry(svc.label, svc.bind_address, svc.domain))
        elif port == 0:
            dynamic.append(svc.entry(port))

    violations = []
    if empty:
        violations.append(
            ConfigViolation(
                rule=EMPTY_BIND_ADDRESS,
                message="Bind address is empty for: " + ", ".join(e.service for e in empty),
                offending=empty,
                remediation_hint="Give every service a bind address such as 0.0.0.0:7070.",
            )
        )
    if invalid:
        violations.append(
            ConfigViolation(
                rule=INVALID_BIND_ADDRESS,
                message="Bind address is not IP:PORT for: "
                + ", ".join(f"{e.service} ({e.bind_address!r})" for e in invalid),
                offending=invalid,
                remediation_hint=(
                    "Use an IP literal and a port, e.g. 0.0.0.0:7070 or [::]:7070. "
                    "Host names are not accepted."
                ),
            )
        )
    if dynamic:
        violations.append(
            ConfigViolation(
                rule=DYNAMIC_PORT,
                message="Port 0 is not supported for: " + ", ".join(e.service for e in dynamic),
                offending=dynamic,
                remediation_hint="Pick an explicit port; dynamic port assignment cannot be proxied.",
            )
        )
    return violations


def check_duplicate_bind_addresses(config: EnvironmentConfig) -> list[ConfigViolation]:
    """No two services listen on the same address/port/protocol."""
    groups: dict[tuple[str, str, int], list[_Service]] = {}
    for svc in _services(config):
        ip, port = parse_bind_address(svc.bind_address)
        if ip is None or port is None or port == 0:
            continue
        groups.setdefault((svc.protocol, str(ip), port), []).append(svc)

    violations = []
    for (protocol, ip, port), members in groups.items():
        if len(members) < 2:
            continue
        violations.append(
            ConfigViolation(
                rule=DUPLICATE_BIND_ADDRESS,
                message=(
                    f"{protocol.upper()} {ip}:{port} is used by "
                    + ", ".join(m.label for m in members)
                ),
                offending=[m.entry(port) for m in members],
                remediation_hint="Give each service its own port (UDP and TCP may share one).",
            )
        )
    return violations


def check_tls_services(config: EnvironmentConfig) -> list[ConfigViolation]:
    """TLS-proxied services need a domain and a non-loopback address."""
    no_domain: list[OffendingEntry] = []
    loopback: list[OffendingEntry] = []

    for svc in _services(config):
        if not svc.use_tls_proxy:
            continue
        if not (svc.domain or "").strip():
            no_domain.append(svc.entry())
        ip, _ = parse_bind_address(svc.bind_address)
        if ip is not None and ip.is_loopback:
            loopback.append(svc.entry())

    violations = []
    if no_domain:
        violations.append(
            ConfigViolation(
                rule=TLS_DOMAIN_MISSING,
                message="use_tls_proxy is set without a domain for: "
                + ", ".join(e.service for e in no_domain),
                offending=no_domain,
                remediation_hint="Add a domain for every service that uses the TLS proxy.",
            )
        )
    if loopback:
        violations.append(
            ConfigViolation(
                rule=TLS_ON_LOCALHOST,
                message="The TLS proxy cannot reach loopback-only services: "
                + ", ".join(f"{e.service} ({e.bind_address})" for e in loopback),
                offending=loopback,
                remediation_hint="Bind the service to 0.0.0.0 or disable use_tls_proxy for it.",
            )
        )
    return violations


def check_https_section(config: EnvironmentConfig) -> list[ConfigViolation]:
    """``https`` is present exactly when some service uses the TLS proxy."""
    uses_tls = config.tracker.uses_tls_proxy()
    if uses_tls and config.https is None:
        tls = [s.entry() for s in _services(config) if s.use_tls_proxy]
        return [
            ConfigViolation(
                rule=HTTPS_SECTION,
                message="TLS proxy is enabled but the https section is missing",
                offending=tls,
                remediation_hint="Add an https section with admin_email for certificate issuance.",
            )
        ]
    if not uses_tls and config.https is not None:
        return [
            ConfigViolation(
                rule=HTTPS_SECTION,
                message="https section is present but no service uses the TLS proxy",
                remediation_hint="Remove the https section, or set use_tls_proxy on a service.",
            )
        ]
    return []


def check_name(config: EnvironmentConfig) -> list[ConfigViolation]:
    reason = check_environment_name(config.name)
    if reason is None:
        return []
    return [
        ConfigViolation(
            rule=INVALID_NAME,
            message=f"Invalid environment name {config.name!r}: {reason}",
            remediation_hint=(
                "Use lowercase letters, digits and dashes; start with a letter "
                "and do not end with a dash (e.g. 'staging-01')."
            ),
        )
    ]


RULES: list[Callable[[EnvironmentConfig], list[ConfigViolation]]] = [
    check_name,
    check_uniform_tls_proxy,
    check_bind_addresses,
    check_duplicate_bind_addresses,
    check_tls_services,
    check_https_section,
]


# ── Entry points ────────────────────────────────────────────────────


def validate_config(config: EnvironmentConfig) -> list[ConfigViolation]:
    """Run every rule. Returns all violations; empty list means valid."""
    violations: list[ConfigViolation] = []
    for rule in RULES:
        violations.extend(rule(config))
    if violations:
        logger.debug(
            "Config '%s' failed %d rule(s): %s",
            config.name,
            len(violations),
            ", ".join(v.rule for v in violations),
        )
    return violations


def ensure_valid(config: EnvironmentConfig, **error_context: Any) -> None:
    """Raise ``ConfigViolationError`` listing every violation, if any."""
    violations = validate_config(config)
    if violations:
        raise ConfigViolationError(violations, **error_context)
