"""
Configuration loader — reads an environment config file into models.

Accepts YAML or JSON (JSON is a YAML subset, so one ``safe_load`` reads
both). The name may sit at the top level or under an ``environment``
mapping:

    environment:
      name: staging
    ssh_credentials: {...}
    provider: {provider: lxd, profile_name: torrust-profile-staging}
    tracker: {...}

Shape errors come from pydantic here; cross-field rules are checked by
``core.validation.validator`` afterwards.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from tracker_deployer.core.errors import DeployerError
from tracker_deployer.core.models.environment import EnvironmentConfig
from tracker_deployer.core.models.outcome import ErrorKind

logger = logging.getLogger(__name__)


class ConfigError(DeployerError):
    """Raised when an environment config file is missing or malformed."""

    kind = ErrorKind.CONFIG_VIOLATION


def parse_config(data: Any, source: str = "<config>") -> EnvironmentConfig:
    """Validate an already-parsed mapping into an ``EnvironmentConfig``."""
    if not isinstance(data, dict):
        raise ConfigError(
            f"Expected a mapping in {source}, got {type(data).__name__}",
            "The config file must be a YAML/JSON object; see 'tracker-deployer template'.",
        )

    data = dict(data)
    env_section = data.pop("environment", None)
    if isinstance(env_section, dict) and "name" not in data:
        data["name"] = env_section.get("name")

    try:
        config = EnvironmentConfig.model_validate(data)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors(include_input=False, include_url=False)
        ]
        raise ConfigError(
            f"Invalid configuration in {source}:\n  " + "\n  ".join(problems),
            "Fix the listed fields; 'tracker-deployer template' prints a complete example.",
        ) from e

    logger.debug("Parsed config '%s' from %s", config.name, source)
    return config


def _describe_yaml_error(e: yaml.YAMLError) -> str:
    # str(e) quotes the offending line, which may be a token
    problem = getattr(e, "problem", None) or type(e).__name__
    mark = getattr(e, "problem_mark", None)
    if mark is None:
        return problem
    return f"{problem} (line {mark.line + 1}, column {mark.column + 1})"


def load_config(path: Path) -> EnvironmentConfig:
    """Read and parse an environment config file.

    Raises:
        ConfigError: If the file is missing, unreadable or malformed.
    """
    if not path.is_file():
        raise ConfigError(
            f"Config file not found: {path}",
            "Pass an existing file with --env-file.",
        )

    logger.debug("Loading environment config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ConfigError(
            f"Cannot read {path}: not valid UTF-8 ({e.reason} at byte {e.start})",
            "Save the config file as UTF-8.",
        ) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", "Check the file permissions.") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML/JSON in {path}: {_describe_yaml_error(e)}",
            "Fix the syntax error at the reported position.",
        ) from e

    return parse_config(data, source=str(path))


def config_template(name: str = "my-environment", provider: str = "lxd") -> dict[str, Any]:
    """A complete example config with the default tracker layout."""
    if provider == "hetzner":
        provider_section: dict[str, Any] = {
            "provider": "hetzner",
            "api_token": "REPLACE_WITH_HETZNER_API_TOKEN",
            "server_type": "cx22",
            "location": "nbg1",
            "image": "ubuntu-24.04",
        }
    else:
        provider_section = {"provider": "lxd", "profile_name": f"torrust-profile-{name}"}

    return {
        "environment": {"name": name},
        "ssh_credentials": {
            "private_key_path": "~/.ssh/id_ed25519",
            "public_key_path": "~/.ssh/id_ed25519.pub",
            "username": "torrust",
            "port": 22,
        },
        "provider": provider_section,
        "tracker": {
            "core": {
                "database": {"driver": "sqlite3", "database_name": "tracker.db"},
                "private": False,
            },
            "udp_trackers": [{"bind_address": "0.0.0.0:6969"}],
            "http_trackers": [{"bind_address": "0.0.0.0:7070"}],
            "http_api": {"bind_address": "0.0.0.0:1212", "admin_token": "MyAccessToken"},
            "health_check_api": {"bind_address": "127.0.0.1:1313"},
        },
    }


def dump_template(name: str = "my-environment", provider: str = "lxd") -> str:
    return yaml.safe_dump(config_template(name, provider), sort_keys=False)
