"""CLI commands for cluster infrastructure: plan, apply, outputs, destroy."""

from __future__ import annotations

import click

from aksflow.cli.common import (
    config_options,
    create_planner,
    handle_deployment_errors,
    init_logging,
    load_config,
)
from aksflow.lib.logging_config import get_logger
from aksflow.models.changeset import ChangeAction, ChangeSet
from aksflow.models.state import InfrastructureState

logger = get_logger(__name__)

_ACTION_STYLES = {
    ChangeAction.CREATE: ("+", "green"),
    ChangeAction.UPDATE: ("~", "yellow"),
    ChangeAction.DELETE: ("-", "red"),
}


@click.group(name="infra", invoke_without_command=True)
@click.pass_context
def infra(ctx: click.Context) -> None:
    """Plan and apply the AKS cluster infrastructure.

    Subcommands:

        plan     Show the changes an apply would make
        apply    Apply the changes under the remote state lease
        outputs  Show the cluster outputs of the last apply
        destroy  Delete every resource recorded in the state

    Example:

        aksflow infra plan

        aksflow infra apply --auto-approve
    """
    ctx.ensure_object(dict)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _display_change_set(change_set: ChangeSet) -> None:
    """Print a plan in the familiar +/~/- form."""
    if change_set.is_empty:
        click.secho("No changes. Infrastructure matches the configuration.", fg="green")
        return

    click.secho("Planned changes:", bold=True)
    for change in change_set.changes:
        symbol, color = _ACTION_STYLES[change.action]
        line = f"  {symbol} {change.address}"
        if change.changed_fields:
            line += f" ({', '.join(change.changed_fields)})"
        click.secho(line, fg=color)
    click.echo()
    click.secho(f"Plan: {change_set.summary()}", bold=True)


def _display_state(state: InfrastructureState) -> None:
    click.secho(f"State serial: {state.serial}", bold=True)
    if state.outputs is not None:
        click.echo(f"  Cluster:  {state.outputs.cluster_name}")
        click.echo(f"  Endpoint: {state.outputs.endpoint}")


@infra.command()
@config_options
@click.option(
    "--out",
    "out_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write the plan as JSON (secrets redacted)",
)
def plan(
    config_path: str | None,
    overrides: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
    out_path: str | None,
) -> None:
    """Show the changes an apply would make.

    Example:

        aksflow infra plan --set cluster.node_count=3

        aksflow infra plan --out plan.json
    """
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config, _ = load_config(config_path, overrides, env_file)
        planner = create_planner(config)
        change_set = planner.plan(config.cluster)

        if not quiet:
            _display_change_set(change_set)

        if out_path:
            from aksflow.deploy.planner import save_plan

            written = save_plan(out_path, change_set)
            if not quiet:
                click.echo(f"Plan written to {written}")


@infra.command()
@config_options
@click.option(
    "--auto-approve",
    is_flag=True,
    help="Apply without asking for confirmation",
)
def apply(
    config_path: str | None,
    overrides: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
    auto_approve: bool,
) -> None:
    """Apply the infrastructure changes.

    The plan and the apply run under one lease on the remote state, so no
    other apply can interleave.

    Example:

        aksflow infra apply

        aksflow infra apply --auto-approve
    """
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config, _ = load_config(config_path, overrides, env_file)
        planner = create_planner(config)

        with planner.lock(keep_alive=True) as lease:
            change_set = planner.plan(config.cluster, lease=lease)
            if not quiet:
                _display_change_set(change_set)

            if change_set.is_empty:
                return

            if not auto_approve and not click.confirm(
                "Apply these changes?", default=False
            ):
                click.echo("Apply cancelled.")
                return

            state = planner.apply(change_set, lease)

        if not quiet:
            click.echo()
            click.secho("Apply complete!", fg="green", bold=True)
            _display_state(state)


@infra.command()
@config_options
def outputs(
    config_path: str | None,
    overrides: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """Show the cluster outputs of the last committed apply.

    Credentials are never printed.
    """
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config, _ = load_config(config_path, overrides, env_file)
        result = create_planner(config).outputs()

        click.secho("Cluster outputs:", bold=True)
        click.echo(f"  Cluster:             {result.cluster_name}")
        click.echo(f"  Resource group:      {result.resource_group_name}")
        click.echo(f"  Node resource group: {result.node_resource_group}")
        click.echo(f"  Endpoint:            {result.endpoint}")


@infra.command()
@config_options
@click.option(
    "--force",
    is_flag=True,
    help="Skip confirmation prompt",
)
def destroy(
    config_path: str | None,
    overrides: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
    force: bool,
) -> None:
    """Delete every resource recorded in the remote state.

    Example:

        aksflow infra destroy

        aksflow infra destroy --force
    """
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config, _ = load_config(config_path, overrides, env_file)

        if not force and not click.confirm(
            f"Destroy cluster '{config.cluster.cluster_name}' and its resources?",
            default=False,
        ):
            click.echo("Destroy cancelled.")
            return

        change_set = create_planner(config).destroy()

        if not quiet:
            if change_set.is_empty:
                click.echo("Nothing to destroy.")
            else:
                click.secho(
                    f"Destroyed {change_set.count(action=ChangeAction.DELETE)} "
                    "resource(s).",
                    fg="green",
                )
