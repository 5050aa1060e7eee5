"""CLI commands for releases: deploy, status, history, rollback, logs, destroy."""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING

import click

from aksflow.cli.common import (
    config_options,
    create_planner,
    create_release_deployer,
    create_release_store,
    handle_deployment_errors,
    init_logging,
    load_config,
)
from aksflow.lib.logging_config import get_logger
from aksflow.models.pipeline import PipelineConfig
from aksflow.models.release import ReleaseRecord, RolloutResult, RolloutStatus

if TYPE_CHECKING:
    from aksflow.deploy.release import ReleaseDeployer

logger = get_logger(__name__)

_STATUS_COLORS = {
    RolloutStatus.SUCCEEDED: "green",
    RolloutStatus.PROGRESSING: "cyan",
    RolloutStatus.PENDING: "yellow",
    RolloutStatus.FAILED: "red",
    RolloutStatus.TIMED_OUT: "yellow",
}


@click.group(name="release", invoke_without_command=True)
@click.pass_context
def release(ctx: click.Context) -> None:
    """Roll out and manage the release on the cluster.

    Subcommands:

        deploy    Roll out an image and wait for the result
        status    Show the current release and the live rollout state
        history   List the recorded releases
        rollback  Re-deploy the previous release
        logs      Print recent logs of the release pods
        destroy   Delete the release from the cluster

    Example:

        aksflow release deploy

        aksflow release deploy --tag v1.2.0 --replicas 3
    """
    ctx.ensure_object(dict)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@contextmanager
def _release_deployer(config: PipelineConfig) -> Generator[ReleaseDeployer, None, None]:
    """ReleaseDeployer for the provisioned cluster, closed on exit."""
    outputs = create_planner(config).outputs()
    release_deployer = create_release_deployer(config, outputs)
    try:
        yield release_deployer
    finally:
        release_deployer.deployer.close()


def _display_rollout(result: RolloutResult) -> None:
    color = _STATUS_COLORS.get(result.status, "white")
    click.secho(
        f"Rollout {result.namespace}/{result.release}: {result.status.value}",
        fg=color,
        bold=True,
    )
    if result.message:
        click.echo(f"  {result.message}")
    click.echo(f"  Elapsed: {result.elapsed:.1f}s")


def _display_record(record: ReleaseRecord, label: str) -> None:
    click.echo(
        f"  {label:<8} rev {record.revision:<3} {record.image.pinned_uri} "
        f"replicas={record.replicas}"
        + (f" at {record.updated_at:%Y-%m-%d %H:%M:%S}" if record.updated_at else "")
    )


@release.command()
@config_options
@click.option(
    "--tag",
    type=str,
    default=None,
    help="Deploy this image tag instead of the source tree's computed tag",
)
@click.option(
    "--replicas",
    type=click.IntRange(min=0),
    default=None,
    help="Override the configured replica count",
)
def deploy(
    config_path: str | None,
    overrides: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
    tag: str | None,
    replicas: int | None,
) -> None:
    """Roll out the release image and wait for a terminal state.

    A failed or timed-out rollout leaves the previous release record in
    place. Nothing is rolled back automatically.

    Example:

        aksflow release deploy

        aksflow release deploy --tag sha-0123456789ab
    """
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        from aksflow.deploy.builder import image_reference
        from aksflow.deploy.release import raise_for_status
        from aksflow.models.release import ImageReference

        config, _ = load_config(config_path, overrides, env_file)
        if tag:
            image = ImageReference(
                registry=config.registry.url,
                repository=config.registry.repository,
                tag=tag,
            )
        else:
            image = image_reference(
                config.release.source, config.release.dockerfile, config.registry
            )

        if not quiet:
            click.echo(f"Deploying {image.uri} to {config.release.namespace}...")

        with _release_deployer(config) as release_deployer:
            result = release_deployer.deploy(config.release, image, replicas=replicas)

        if not quiet:
            _display_rollout(result)
        raise_for_status(result, config.release.timeout_seconds)


@release.command()
@config_options
def status(
    config_path: str | None,
    overrides: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """Show the current release record and the live rollout state."""
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        from aksflow.deploy.release import classify_snapshot, describe_snapshot

        config, _ = load_config(config_path, overrides, env_file)
        namespace, name = config.release.namespace, config.release.name

        record = create_release_store(config).current(namespace, name)
        click.secho(f"Release {namespace}/{name}", bold=True)
        if record is None:
            click.echo("  No succeeded release recorded.")
        else:
            _display_record(record, "current")

        with _release_deployer(config) as release_deployer:
            snapshot = release_deployer.deployer.get_rollout_snapshot(namespace, name)

        threshold = config.release.crash_restart_threshold
        observed = classify_snapshot(snapshot, threshold)
        click.secho(
            f"  Live: {observed.value} ({describe_snapshot(snapshot, threshold)})",
            fg=_STATUS_COLORS.get(observed, "white"),
        )


@release.command()
@config_options
def history(
    config_path: str | None,
    overrides: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """List the current and previous release records."""
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config, _ = load_config(config_path, overrides, env_file)
        namespace, name = config.release.namespace, config.release.name
        records = create_release_store(config).history(namespace, name)

        if records.current is None:
            click.echo(f"No releases recorded for {namespace}/{name}.")
            return

        click.secho(f"Release history for {namespace}/{name}:", bold=True)
        _display_record(records.current, "current")
        for record in records.previous:
            _display_record(record, "previous")


@release.command()
@config_options
@click.option(
    "--force",
    is_flag=True,
    help="Skip confirmation prompt",
)
def rollback(
    config_path: str | None,
    overrides: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
    force: bool,
) -> None:
    """Re-deploy the image and replica count of the previous release.

    Example:

        aksflow release rollback --force
    """
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        from aksflow.deploy.release import raise_for_status

        config, _ = load_config(config_path, overrides, env_file)
        namespace, name = config.release.namespace, config.release.name
        previous = create_release_store(config).previous(namespace, name)

        if previous is not None and not force:
            click.echo(f"Rolling back {namespace}/{name} to:")
            _display_record(previous, "target")
            if not click.confirm("Continue?", default=False):
                click.echo("Rollback cancelled.")
                return

        with _release_deployer(config) as release_deployer:
            result = release_deployer.rollback(config.release)

        if not quiet:
            _display_rollout(result)
        raise_for_status(result, config.release.timeout_seconds)


@release.command()
@config_options
def logs(
    config_path: str | None,
    overrides: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """Print recent log lines from every pod of the release."""
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config, _ = load_config(config_path, overrides, env_file)

        with _release_deployer(config) as release_deployer:
            for line in release_deployer.deployer.stream_logs(
                config.release.namespace, config.release.name
            ):
                click.echo(line)


@release.command()
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
    """Delete the release Deployment and Service and forget its history.

    Example:

        aksflow release destroy --force
    """
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config, _ = load_config(config_path, overrides, env_file)
        namespace, name = config.release.namespace, config.release.name

        if not force and not click.confirm(
            f"Delete release {namespace}/{name}?", default=False
        ):
            click.echo("Destroy cancelled.")
            return

        with _release_deployer(config) as release_deployer:
            release_deployer.destroy(config.release)

        if not quiet:
            click.secho(f"Release {namespace}/{name} deleted.", fg="green")
