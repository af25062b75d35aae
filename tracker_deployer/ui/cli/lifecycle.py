"""
CLI commands for the lifecycle transitions (register included) and the
smoke test.

Thin wrappers over ``tracker_deployer.core.use_cases``.
"""

from __future__ import annotations

import sys

import click

from tracker_deployer.core.errors import DeployerError
from tracker_deployer.core.lifecycle.state_machine import Transition
from tracker_deployer.ui.cli.common import echo_json, get_deployer, report_error

_TRANSITION_HELP = {
    Transition.PROVISION: "Create the host and wait until it is reachable (created → provisioned).",
    Transition.CONFIGURE: "Install Docker and Compose on the host (provisioned → configured).",
    Transition.RELEASE: "Render and upload the tracker stack (configured → released).",
    Transition.RUN: "Start the stack and check its health (released → running).",
}


def _transition_command(transition: Transition) -> click.Command:
    @click.command(name=transition.value, help=_TRANSITION_HELP[transition])
    @click.argument("environment")
    @click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
    @click.pass_context
    def command(ctx: click.Context, environment: str, as_json: bool) -> None:
        from tracker_deployer.core.use_cases.lifecycle import run_transition

        deployer = get_deployer(ctx)
        try:
            result = run_transition(deployer, transition, environment)
        except DeployerError as e:
            report_error(e, as_json)

        if as_json:
            echo_json(result.to_dict())
            return

        click.secho(
            f"✅ {transition.value}: {environment} {result.stage_before} → {result.stage_after}",
            fg="green",
            bold=True,
        )
        for step_id in result.completed_steps:
            click.echo(f"   ✓ {step_id}")

    return command


provision = _transition_command(Transition.PROVISION)
configure = _transition_command(Transition.CONFIGURE)
release = _transition_command(Transition.RELEASE)
run = _transition_command(Transition.RUN)


@click.command("register")
@click.argument("environment")
@click.option("--instance-ip", "--ip", "instance_ip", required=True, help="IP of the existing host.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def register(ctx: click.Context, environment: str, instance_ip: str, as_json: bool) -> None:
    """Use an existing host instead of provisioning one (created → provisioned)."""
    from tracker_deployer.core.use_cases.lifecycle import register_environment

    deployer = get_deployer(ctx)
    try:
        result = register_environment(deployer, environment, instance_ip)
    except DeployerError as e:
        report_error(e, as_json)

    if as_json:
        echo_json(result.to_dict())
        return

    click.secho(
        f"✅ register: {environment} {result.stage_before} → {result.stage_after}",
        fg="green",
        bold=True,
    )
    for step_id in result.completed_steps:
        click.echo(f"   ✓ {step_id}")
    click.echo("   The host is not managed by the provider; 'destroy' will leave it running.")


@click.command("test")
@click.argument("environment")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def smoke_test(ctx: click.Context, environment: str, as_json: bool) -> None:
    """Read-only check that the host matches its recorded stage."""
    from tracker_deployer.core.use_cases.smoke_test import SmokeTestHandler

    deployer = get_deployer(ctx)
    try:
        result = SmokeTestHandler(deployer).execute(environment)
    except DeployerError as e:
        report_error(e, as_json)

    if as_json:
        echo_json(result.to_dict())
        sys.exit(0 if result.ok else 1)

    click.secho(f"🔎 {environment} ({result.stage})", fg="cyan", bold=True)
    for outcome in result.pipeline.outcomes:
        if outcome.ok:
            click.echo(f"   ✓ {outcome.step_id}  {outcome.detail}")
        else:
            click.secho(f"   ✗ {outcome.step_id}  {outcome.message}", fg="red")
            if outcome.remediation_hint:
                click.secho(f"     💡 {outcome.remediation_hint}", fg="yellow")

    if not result.ok:
        sys.exit(1)
    click.secho("✅ All checks passed", fg="green")


COMMANDS = [provision, register, configure, release, run, smoke_test]
