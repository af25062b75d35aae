"""
Use cases — the command handlers the CLI calls.
"""

from tracker_deployer.core.use_cases.base import Deployer, TransitionHandler, TransitionResult
from tracker_deployer.core.use_cases.environments import (
    create_environment,
    create_from_file,
    destroy_environment,
    list_environments,
    purge_environment,
    show_environment,
    validate_file,
)
from tracker_deployer.core.use_cases.lifecycle import (
    HANDLERS,
    ConfigureHandler,
    ProvisionHandler,
    RegisterHandler,
    ReleaseHandler,
    RunHandler,
    register_environment,
    run_transition,
)
from tracker_deployer.core.use_cases.render import RenderResult, render_environment, render_file
from tracker_deployer.core.use_cases.smoke_test import SmokeTestHandler, SmokeTestResult

__all__ = [
    "HANDLERS",
    "ConfigureHandler",
    "Deployer",
    "ProvisionHandler",
    "RegisterHandler",
    "ReleaseHandler",
    "RenderResult",
    "RunHandler",
    "SmokeTestHandler",
    "SmokeTestResult",
    "TransitionHandler",
    "TransitionResult",
    "create_environment",
    "create_from_file",
    "destroy_environment",
    "list_environments",
    "purge_environment",
    "register_environment",
    "render_environment",
    "render_file",
    "run_transition",
    "show_environment",
    "validate_file",
]
