"""
Tracker Deployer — CLI entrypoint.

Usage:
    tracker-deployer --help
    tracker-deployer create --env-file staging.yml
    tracker-deployer provision staging
    tracker-deployer test staging
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from tracker_deployer import __version__
from tracker_deployer.core.config.settings import DEFAULT_BUILD_DIR, DEFAULT_DATA_DIR, DeployerSettings
from tracker_deployer.core.errors import DeployerError
from tracker_deployer.core.observability.logging_config import setup_logging_from_env
from tracker_deployer.ui.cli.common import echo_json, get_deployer, report_error
from tracker_deployer.ui.cli.lifecycle import COMMANDS as LIFECYCLE_COMMANDS


@click.group()
@click.version_option(version=__version__, prog_name="tracker-deployer")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_DATA_DIR,
    show_default=True,
    help="Where environment records are stored.",
)
@click.option(
    "--build-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_BUILD_DIR,
    show_default=True,
    help="Where release files are rendered.",
)
@click.option("--mock", is_flag=True, help="Use in-memory fakes instead of real hosts.")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    data_dir: Path,
    build_dir: Path,
    mock: bool,
) -> None:
    """Tracker Deployer — provision, configure and run BitTorrent trackers."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    ctx.obj["mock"] = mock
    ctx.obj["settings"] = DeployerSettings(data_dir=data_dir, build_dir=build_dir)

    setup_logging_from_env(debug=debug, verbose=verbose, quiet=quiet)


# ── Environment commands ────────────────────────────────────────────


@cli.command()
@click.option(
    "--env-file",
    "-f",
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Environment config (YAML or JSON).",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def create(ctx: click.Context, env_file: Path, as_json: bool) -> None:
    """Create an environment from a config file."""
    from tracker_deployer.core.use_cases.environments import create_from_file

    deployer = get_deployer(ctx)
    try:
        env = create_from_file(deployer, env_file)
    except DeployerError as e:
        report_error(e, as_json)

    if as_json:
        echo_json(env.summary())
        return

    click.secho(f"✅ Environment '{env.name}' created", fg="green", bold=True)
    click.echo(f"   Stage: {env.stage}")
    click.echo(f"   Data:  {deployer.store.state_path(env.name)}")
    click.echo(f"   Next:  tracker-deployer provision {env.name}")


@cli.command()
@click.option(
    "--env-file",
    "-f",
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Environment config (YAML or JSON).",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def validate(env_file: Path, as_json: bool) -> None:
    """Check a config file without creating anything."""
    from tracker_deployer.core.use_cases.environments import validate_file

    try:
        result = validate_file(env_file)
    except DeployerError as e:
        report_error(e, as_json)

    if as_json:
        echo_json(result.to_dict())
        sys.exit(0 if result.valid else 1)

    if result.valid:
        click.secho(f"✅ {env_file} is valid", fg="green", bold=True)
        click.echo(f"   Environment: {result.config.name}")
        return

    click.secho(f"❌ {len(result.violations)} violation(s) in {env_file}:", fg="red", bold=True)
    for v in result.violations:
        click.echo(f"   • [{v.rule}] {v.message}")
        for entry in v.offending:
            where = f" (port {entry.port})" if entry.port is not None else ""
            click.echo(f"       - {entry.service}: {entry.bind_address}{where}")
        if v.remediation_hint:
            click.secho(f"     💡 {v.remediation_hint}", fg="yellow")
    sys.exit(1)


@cli.command()
@click.option("--name", default="my-environment", show_default=True, help="Environment name.")
@click.option(
    "--provider",
    type=click.Choice(["lxd", "hetzner"]),
    default="lxd",
    show_default=True,
    help="Host provider.",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write to a file instead of stdout.",
)
def template(name: str, provider: str, output: Path | None) -> None:
    """Print an example environment config."""
    from tracker_deployer.core.config.loader import dump_template

    content = dump_template(name, provider)
    if output is None:
        click.echo(content, nl=False)
        return
    if output.exists():
        click.secho(f"❌ {output} already exists", fg="red", err=True)
        sys.exit(1)
    output.write_text(content, encoding="utf-8")
    click.secho(f"✅ Template written to {output}", fg="green")


@cli.command()
@click.argument("environment")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show(ctx: click.Context, environment: str, as_json: bool) -> None:
    """Show one environment (secrets are never shown)."""
    from tracker_deployer.core.use_cases.environments import show_environment

    try:
        data = show_environment(get_deployer(ctx), environment)
    except DeployerError as e:
        report_error(e, as_json)

    if as_json:
        echo_json(data)
        return

    click.secho(f"\n📋 {data['name']}", fg="cyan", bold=True)
    click.echo(f"   Stage:    {data['stage']}")
    click.echo(f"   Provider: {data['provider']}")
    if data["instance_ip"]:
        click.echo(f"   IP:       {data['instance_ip']}")
    click.echo(f"   TLS:      {'yes' if data['tls_proxy'] else 'no'}")
    click.echo(f"   Updated:  {data['updated_at']}")

    failure = data["failure"]
    if failure:
        click.echo()
        click.secho(
            f"   ⚠️  {failure['transition']} failed at step "
            f"{failure['step_index'] + 1}/{failure['total_steps']} '{failure['step']}' "
            f"({failure['kind']})",
            fg="yellow",
        )
        click.echo(f"      {failure['message']}")
        if failure["remediation_hint"]:
            click.echo(f"      💡 {failure['remediation_hint']}")

    if data["next"]:
        click.echo()
        click.echo(f"   Next: tracker-deployer {data['next'][0]} {data['name']}")
    click.echo()


@cli.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_cmd(ctx: click.Context, as_json: bool) -> None:
    """List environments."""
    from tracker_deployer.core.use_cases.environments import list_environments

    rows = list_environments(get_deployer(ctx))
    if as_json:
        echo_json(rows)
        return

    if not rows:
        click.echo("No environments.")
        return

    for row in rows:
        if row.get("error"):
            click.secho(f"   ✗ {row['name']:<24} unreadable: {row['error']}", fg="red")
            continue
        marker = " ⚠️  failed" if row["failed"] else ""
        click.echo(f"   • {row['name']:<24} {row['stage']:<12} {row['provider']}{marker}")


@cli.command()
@click.argument("environment")
@click.option("--keep-host", is_flag=True, help="Only delete the local record.")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def destroy(ctx: click.Context, environment: str, keep_host: bool, yes: bool, as_json: bool) -> None:
    """Destroy the host and delete the environment record."""
    from tracker_deployer.core.use_cases.environments import destroy_environment

    if not yes and not as_json:
        what = "the local record" if keep_host else "the host and the local record"
        click.confirm(f"Destroy {what} of '{environment}'?", abort=True)

    try:
        result = destroy_environment(get_deployer(ctx), environment, keep_host=keep_host)
    except DeployerError as e:
        report_error(e, as_json)

    if as_json:
        echo_json(result.to_dict())
        return

    click.secho(f"✅ Environment '{environment}' destroyed", fg="green", bold=True)
    if result.host_destroyed:
        click.echo("   Host deleted at the provider.")


@cli.command()
@click.argument("environment")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def purge(ctx: click.Context, environment: str, yes: bool, as_json: bool) -> None:
    """Delete the local record and build files; the host is not touched."""
    from tracker_deployer.core.use_cases.environments import purge_environment

    if not yes and not as_json:
        click.confirm(f"Delete all local data of '{environment}'?", abort=True)

    try:
        result = purge_environment(get_deployer(ctx), environment)
    except DeployerError as e:
        report_error(e, as_json)

    if as_json:
        echo_json(result.to_dict())
        return

    click.secho(f"✅ Environment '{environment}' purged", fg="green", bold=True)
    for path in result.removed:
        click.echo(f"   Removed {path}")


@cli.command()
@click.argument("environment", required=False)
@click.option(
    "--env-file",
    "-f",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Render from a config file instead of a stored environment.",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Output directory (default: the environment's build directory).",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def render(
    ctx: click.Context,
    environment: str | None,
    env_file: Path | None,
    output: Path | None,
    as_json: bool,
) -> None:
    """Write the release files locally without deploying them."""
    from tracker_deployer.core.use_cases.render import render_environment, render_file

    if (environment is None) == (env_file is None):
        report_error(
            DeployerError(
                "Give either an environment name or --env-file",
                "tracker-deployer render staging  |  tracker-deployer render -f staging.yml",
            ),
            as_json,
        )

    deployer = get_deployer(ctx)
    try:
        if env_file is not None:
            result = render_file(deployer, env_file, output)
        else:
            result = render_environment(deployer, environment, output)
    except DeployerError as e:
        report_error(e, as_json)

    if as_json:
        echo_json(result.to_dict())
        return

    click.secho(f"✅ Rendered '{result.environment}' into {result.output_dir}", fg="green", bold=True)
    for path in result.files:
        click.echo(f"   • {path.relative_to(result.output_dir)}")


for _command in LIFECYCLE_COMMANDS:
    cli.add_command(_command)


if __name__ == "__main__":
    cli()
