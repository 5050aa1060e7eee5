"""CLI command running the full provision, publish and deploy pipeline."""

from __future__ import annotations

import click

from aksflow.cli.common import (
    config_options,
    create_planner,
    create_release_deployer,
    handle_deployment_errors,
    init_logging,
    load_config,
)
from aksflow.lib.logging_config import get_logger
from aksflow.pipeline import PipelineResult, StageStatus

logger = get_logger(__name__)

_STAGE_STYLES = {
    StageStatus.SUCCEEDED: ("ok", "green"),
    StageStatus.FAILED: ("failed", "red"),
    StageStatus.TIMED_OUT: ("timed out", "yellow"),
    StageStatus.SKIPPED: ("skipped", "bright_black"),
}


def _display_result(result: PipelineResult) -> None:
    click.echo()
    title = "Pipeline plan" if result.dry_run else "Pipeline"
    click.secho(f"{title}:", bold=True)
    for stage in result.stages:
        label, color = _STAGE_STYLES[stage.status]
        line = f"  {stage.name:<10} {label:<10}"
        if stage.status != StageStatus.SKIPPED:
            line += f" {stage.duration:6.1f}s"
        click.secho(line, fg=color)
        if stage.message:
            click.echo(f"             {stage.message}")


@click.command(name="run")
@config_options
@click.option(
    "--dry-run",
    is_flag=True,
    help="Plan, tag and render without changing anything",
)
@click.option(
    "--skip-publish",
    is_flag=True,
    help="Deploy the computed tag without building or pushing it",
)
def run(
    config_path: str | None,
    overrides: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
    dry_run: bool,
    skip_publish: bool,
) -> None:
    """Provision the cluster, publish the image and roll out the release.

    Stages run in order and stop at the first failure.

    Example:

        aksflow run

        aksflow run --dry-run

        aksflow run -c deploy/pipeline.yaml --set release.replicas=3
    """
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        from aksflow.pipeline import Pipeline

        config, _ = load_config(config_path, overrides, env_file)
        planner = create_planner(config)

        publisher = None
        if not dry_run and not skip_publish:
            from aksflow.deploy.builder import ContainerBuilder, ImagePublisher
            from aksflow.lib.retry import RetryPolicy

            publisher = ImagePublisher(
                ContainerBuilder(), retry=RetryPolicy.from_config(config.retry)
            )

        pipeline = Pipeline(
            config,
            planner=planner,
            publisher=publisher,
            release_deployer_factory=lambda outputs: create_release_deployer(
                config, outputs
            ),
            skip_publish=skip_publish,
        )

        if dry_run and not quiet:
            click.secho("[DRY RUN] No changes will be made", fg="yellow")

        result = pipeline.run(dry_run=dry_run)

        if not quiet:
            _display_result(result)

        if result.error is not None:
            raise result.error

        if not quiet:
            click.echo()
            click.secho("Pipeline succeeded!", fg="green", bold=True)
