"""Shared helpers for aksflow CLI commands."""

from __future__ import annotations

import sys
from collections.abc import Callable, Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

import click

from aksflow.lib.errors import (
    ConfigError,
    DeploymentError,
    FileNotFoundError,
    RolloutTimedOutError,
    ValidationError,
)
from aksflow.lib.logging_config import get_logger, setup_logging
from aksflow.models.pipeline import PipelineConfig

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

EXIT_CONFIG_ERROR = 2
EXIT_DEPLOYMENT_ERROR = 3
EXIT_ROLLOUT_TIMED_OUT = 4


@contextmanager
def handle_deployment_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in CLI commands.

    Exit codes:
        2: Configuration error
        3: Deployment/execution error
        4: Rollout timed out (the release may still converge)
    """
    try:
        yield
    except (ConfigError, FileNotFoundError, ValidationError) as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except RolloutTimedOutError as e:
        logger.error(f"Rollout timed out: {e}")
        click.secho("Error: rollout timed out", fg="yellow", err=True)
        click.echo(f"  {e.message}", err=True)
        click.echo(
            "  The release may still converge. Check it with "
            "'aksflow release status' before rolling back.",
            err=True,
        )
        sys.exit(EXIT_ROLLOUT_TIMED_OUT)
    except DeploymentError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(EXIT_DEPLOYMENT_ERROR)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(EXIT_DEPLOYMENT_ERROR)


def config_options(func: F) -> F:
    """Add the options every pipeline command accepts."""
    options = [
        click.option(
            "--config",
            "-c",
            "config_path",
            type=click.Path(dir_okay=False),
            default=None,
            help="Pipeline configuration file (default: ./pipeline.yaml)",
        ),
        click.option(
            "--set",
            "overrides",
            multiple=True,
            metavar="KEY=VALUE",
            help="Override a configuration value, e.g. --set release.replicas=3",
        ),
        click.option(
            "--env-file",
            type=click.Path(dir_okay=False),
            default=None,
            help="Load environment variables from this file",
        ),
        click.option(
            "--verbose", "-v", is_flag=True, help="Enable verbose debug logging"
        ),
        click.option("--quiet", "-q", is_flag=True, help="Suppress progress output"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def init_logging(verbose: bool, quiet: bool) -> None:
    setup_logging(verbose=verbose, quiet=quiet)


def load_config(
    config_path: str | None,
    overrides: tuple[str, ...] = (),
    env_file: str | None = None,
) -> tuple[PipelineConfig, Path]:
    """Locate, load and validate the pipeline configuration.

    Raises:
        ConfigError: If no configuration file can be found
        ConfigInvalidError: If the configuration is invalid
    """
    from aksflow.config.loader import ConfigLoader, find_config_file, parse_overrides

    if config_path is None:
        found = find_config_file(Path.cwd())
        if found is None:
            raise ConfigError(
                field="config",
                message=(
                    "No pipeline.yaml found in the current directory. "
                    "Pass one with --config."
                ),
            )
        path = found
    else:
        path = Path(config_path)

    loader = ConfigLoader(env_file=env_file)
    config = loader.load_pipeline_config(path, overrides=parse_overrides(overrides))
    path = path.resolve()
    return resolve_paths(config, path.parent), path


def resolve_paths(config: PipelineConfig, base_dir: Path) -> PipelineConfig:
    """Anchor relative source, template and state paths at the config directory."""

    def anchor(value: str) -> str:
        candidate = Path(value)
        return str(candidate if candidate.is_absolute() else base_dir / candidate)

    release_update: dict[str, Any] = {"source": anchor(config.release.source)}
    if config.release.template:
        release_update["template"] = anchor(config.release.template)
    return config.model_copy(
        update={
            "release": config.release.model_copy(update=release_update),
            "state": config.state.model_copy(
                update={"path": anchor(config.state.path)}
            ),
        }
    )


def create_planner(config: PipelineConfig) -> Any:
    from aksflow.deploy.planner import InfrastructurePlanner
    from aksflow.deploy.provisioners import create_provisioner
    from aksflow.deploy.state import create_state_backend

    return InfrastructurePlanner.from_config(
        config,
        provisioner=create_provisioner(config),
        backend=create_state_backend(config.state),
    )


def create_release_store(config: PipelineConfig) -> Any:
    from aksflow.deploy.release_store import ReleaseStore
    from aksflow.deploy.state import create_state_backend

    return ReleaseStore(create_state_backend(config.state))


def create_release_deployer(config: PipelineConfig, outputs: Any) -> Any:
    from aksflow.deploy.deployers import create_deployer
    from aksflow.deploy.release import ReleaseDeployer
    from aksflow.lib.retry import RetryPolicy

    return ReleaseDeployer.from_config(
        create_deployer(outputs),
        create_release_store(config),
        config.release,
        retry=RetryPolicy.from_config(config.retry),
    )
