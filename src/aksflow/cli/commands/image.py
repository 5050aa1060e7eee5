"""CLI commands for container images: tag, build, publish."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from aksflow.cli.common import (
    config_options,
    handle_deployment_errors,
    init_logging,
    load_config,
)
from aksflow.lib.logging_config import get_logger
from aksflow.models.pipeline import PipelineConfig

if TYPE_CHECKING:
    from aksflow.deploy.builder import ImagePublisher

logger = get_logger(__name__)


@click.group(name="image", invoke_without_command=True)
@click.pass_context
def image(ctx: click.Context) -> None:
    """Build and publish the release container image.

    Subcommands:

        tag      Print the tag the current source tree would get
        build    Build the image locally
        publish  Build and push the image

    Example:

        aksflow image publish

        aksflow image build --dry-run
    """
    ctx.ensure_object(dict)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _create_publisher(config: PipelineConfig) -> ImagePublisher:
    from aksflow.deploy.builder import ContainerBuilder, ImagePublisher
    from aksflow.lib.retry import RetryPolicy

    return ImagePublisher(
        ContainerBuilder(), retry=RetryPolicy.from_config(config.retry)
    )


def _display_configuration(config: PipelineConfig, uri: str) -> None:
    click.echo()
    click.secho("Build Configuration:", bold=True)
    click.echo(f"  Source:       {config.release.source}")
    click.echo(f"  Dockerfile:   {config.release.dockerfile}")
    click.echo(f"  Platform:     {config.release.platform}")
    click.echo(f"  Tag strategy: {config.registry.tag_strategy.value}")
    click.echo(f"  Image:        {uri}")
    click.echo()


@image.command()
@config_options
def tag(
    config_path: str | None,
    overrides: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """Print the image reference for the current source tree."""
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        from aksflow.deploy.builder import image_reference

        config, _ = load_config(config_path, overrides, env_file)
        reference = image_reference(
            config.release.source, config.release.dockerfile, config.registry
        )
        click.echo(reference.uri)


@image.command()
@config_options
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be done without executing",
)
def build(
    config_path: str | None,
    overrides: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
    dry_run: bool,
) -> None:
    """Build the release image under its computed tag.

    Example:

        aksflow image build

        aksflow image build --set registry.tag_strategy=git_sha
    """
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        from aksflow.deploy.builder import image_reference

        config, _ = load_config(config_path, overrides, env_file)
        reference = image_reference(
            config.release.source, config.release.dockerfile, config.registry
        )

        if not quiet:
            _display_configuration(config, reference.uri)

        if dry_run:
            click.secho("[DRY RUN] Skipping image build", fg="yellow")
            return

        publisher = _create_publisher(config)
        built, result = publisher.build(
            config.release.source,
            config.release.dockerfile,
            config.registry,
            platform=config.release.platform,
            app_name=config.release.name,
            port=config.release.container_port,
        )

        if not quiet:
            click.secho("Build successful!", fg="green", bold=True)
            click.echo(f"  Image: {built.uri}")
            click.echo(f"  ID:    {result.image_id[:19]}")
            if verbose:
                for line in result.log_lines:
                    click.echo(f"  {line}")


@image.command()
@config_options
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be done without executing",
)
def publish(
    config_path: str | None,
    overrides: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
    dry_run: bool,
) -> None:
    """Build and push the release image.

    Example:

        aksflow image publish
    """
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        from aksflow.deploy.builder import image_reference

        config, _ = load_config(config_path, overrides, env_file)

        if dry_run:
            reference = image_reference(
                config.release.source, config.release.dockerfile, config.registry
            )
            if not quiet:
                _display_configuration(config, reference.uri)
            click.secho("[DRY RUN] Skipping build and push", fg="yellow")
            return

        result = _create_publisher(config).publish(
            config.release.source,
            config.release.dockerfile,
            config.registry,
            platform=config.release.platform,
            app_name=config.release.name,
            port=config.release.container_port,
        )

        if not quiet:
            click.secho("Publish successful!", fg="green", bold=True)
            click.echo(f"  Image:  {result.image.uri}")
            if result.image.digest:
                click.echo(f"  Digest: {result.image.digest}")
