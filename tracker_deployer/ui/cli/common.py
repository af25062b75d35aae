"""
Shared CLI helpers — building the deployer and reporting errors.
"""

from __future__ import annotations

import json
import sys
from typing import NoReturn

import click

from tracker_deployer.core.errors import ConfigViolationError, DeployerError, StepFailedError
from tracker_deployer.core.use_cases.base import Deployer


def get_deployer(ctx: click.Context) -> Deployer:
    """The Deployer for this invocation (built once, cached on ctx.obj)."""
    obj = ctx.ensure_object(dict)
    deployer = obj.get("deployer")
    if deployer is None:
        deployer = Deployer.from_settings(obj["settings"], mock=obj.get("mock", False))
        obj["deployer"] = deployer
    return deployer


def report_error(err: DeployerError, as_json: bool) -> NoReturn:
    """Print ``err`` with its remediation hint and exit 1."""
    if as_json:
        click.echo(json.dumps({"error": err.to_dict()}, indent=2))
        sys.exit(1)

    click.secho(f"❌ {err.message}", fg="red", err=True)
    if isinstance(err, ConfigViolationError):
        for v in err.violations:
            for entry in v.offending:
                where = f" (port {entry.port})" if entry.port is not None else ""
                click.echo(f"     • {entry.service}: {entry.bind_address}{where}", err=True)
    if isinstance(err, StepFailedError) and err.trace_id:
        click.echo(f"   trace: {err.trace_id}", err=True)
    if err.remediation_hint:
        click.secho("💡 " + err.remediation_hint.replace("\n", "\n   "), fg="yellow", err=True)
    sys.exit(1)


def echo_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2, default=str))
