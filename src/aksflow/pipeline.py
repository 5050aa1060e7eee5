"""Provision, publish and deploy stages composed into one fail-fast pipeline.

Stages run strictly in sequence. The first stage error marks every later
stage as skipped; a rollout timeout ends the pipeline with its own
``timed_out`` status so callers can tell "still converging" from "broken".
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from aksflow.deploy.builder import ImagePublisher, image_reference
from aksflow.deploy.manifest import build_values, load_template, render
from aksflow.deploy.planner import InfrastructurePlanner
from aksflow.deploy.release import ReleaseDeployer, raise_for_status
from aksflow.lib.errors import AksFlowError, DeploymentError, RolloutTimedOutError
from aksflow.lib.logging_config import get_logger
from aksflow.models.changeset import ChangeSet
from aksflow.models.pipeline import PipelineConfig
from aksflow.models.release import ImageReference, RolloutResult
from aksflow.models.state import ClusterOutputs

logger = get_logger(__name__)


class StageStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


class PipelineStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class StageResult:
    """Outcome of one stage.

    Attributes:
        name: Stage name (provision, publish, deploy)
        status: Stage status
        duration: Wall-clock seconds spent in the stage
        message: Summary or error message
        error_type: Class name of the error that ended the stage
    """

    name: str
    status: StageStatus
    duration: float = 0.0
    message: str = ""
    error_type: str | None = None


@dataclass
class PipelineResult:
    """Outcome of a pipeline run."""

    status: PipelineStatus
    stages: list[StageResult] = field(default_factory=list)
    change_set: ChangeSet | None = None
    image: ImageReference | None = None
    rollout: RolloutResult | None = None
    error: AksFlowError | None = None
    dry_run: bool = False

    def stage(self, name: str) -> StageResult:
        for result in self.stages:
            if result.name == name:
                return result
        raise KeyError(name)

    @property
    def succeeded(self) -> bool:
        return self.status == PipelineStatus.SUCCEEDED


class _StageFailed(Exception):
    def __init__(self, error: AksFlowError) -> None:
        self.error = error
        super().__init__(str(error))


class Pipeline:
    """Runs the provision, publish and deploy stages for one configuration."""

    def __init__(
        self,
        config: PipelineConfig,
        planner: InfrastructurePlanner,
        publisher: ImagePublisher | None,
        release_deployer_factory: Callable[[ClusterOutputs], ReleaseDeployer],
        skip_publish: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.skip_publish = skip_publish
        self.planner = planner
        self.publisher = publisher
        self.release_deployer_factory = release_deployer_factory
        self._clock = clock

    def _run_stage(
        self,
        name: str,
        func: Callable[[], tuple[Any, str]],
        results: list[StageResult],
    ) -> Any:
        started = self._clock()
        logger.info(f"Stage '{name}' started")
        try:
            value, message = func()
        except Exception as exc:
            if isinstance(exc, AksFlowError):
                error: AksFlowError = exc
            else:
                logger.exception(f"Unexpected error in stage '{name}'")
                error = DeploymentError(operation=name, message=str(exc))
            duration = self._clock() - started
            status = (
                StageStatus.TIMED_OUT
                if isinstance(error, RolloutTimedOutError)
                else StageStatus.FAILED
            )
            logger.error(f"Stage '{name}' {status.value}: {error}")
            results.append(
                StageResult(
                    name=name,
                    status=status,
                    duration=duration,
                    message=str(error),
                    error_type=type(error).__name__,
                )
            )
            raise _StageFailed(error) from exc
        duration = self._clock() - started
        logger.info(f"Stage '{name}' succeeded in {duration:.1f}s: {message}")
        results.append(
            StageResult(
                name=name,
                status=StageStatus.SUCCEEDED,
                duration=duration,
                message=message,
            )
        )
        return value

    def run(self, dry_run: bool = False) -> PipelineResult:
        """Run every stage, stopping at the first failure.

        Args:
            dry_run: Plan infrastructure, compute the image tag and render
                the manifest without changing anything

        Returns:
            PipelineResult; errors are captured on the result, not raised
        """
        result = PipelineResult(status=PipelineStatus.SUCCEEDED, dry_run=dry_run)
        steps = self._dry_run_steps(result) if dry_run else self._steps(result)

        for index, (name, func) in enumerate(steps):
            try:
                self._run_stage(name, func, result.stages)
            except _StageFailed as failed:
                result.error = failed.error
                result.status = (
                    PipelineStatus.TIMED_OUT
                    if isinstance(failed.error, RolloutTimedOutError)
                    else PipelineStatus.FAILED
                )
                for skipped, _ in steps[index + 1 :]:
                    result.stages.append(
                        StageResult(
                            name=skipped,
                            status=StageStatus.SKIPPED,
                            message=f"Skipped after '{name}' {result.status.value}",
                        )
                    )
                break

        logger.info(f"Pipeline {result.status.value}")
        return result

    def _steps(
        self, result: PipelineResult
    ) -> list[tuple[str, Callable[[], tuple[Any, str]]]]:
        config = self.config
        context: dict[str, Any] = {}

        def provision() -> tuple[Any, str]:
            change_set, state = self.planner.plan_and_apply(config.cluster)
            result.change_set = change_set
            context["outputs"] = state.outputs or self.planner.outputs()
            return state, f"{change_set.summary()} (serial {state.serial})"

        def publish() -> tuple[Any, str]:
            if self.skip_publish:
                image = image_reference(
                    config.release.source, config.release.dockerfile, config.registry
                )
                result.image = image
                return image, f"using {image.uri} without publishing"
            if self.publisher is None:
                raise DeploymentError(
                    operation="publish", message="No image publisher configured"
                )
            published = self.publisher.publish(
                config.release.source,
                config.release.dockerfile,
                config.registry,
                platform=config.release.platform,
                app_name=config.release.name,
                port=config.release.container_port,
            )
            result.image = published.image
            return published.image, f"{published.image.pinned_uri} published"

        def deploy() -> tuple[Any, str]:
            assert result.image is not None  # noqa: S101
            release_deployer = self.release_deployer_factory(context["outputs"])
            try:
                rollout = release_deployer.deploy(config.release, result.image)
            finally:
                release_deployer.deployer.close()
            result.rollout = rollout
            raise_for_status(rollout, config.release.timeout_seconds)
            return rollout, f"{rollout.status.value} in {rollout.elapsed:.1f}s"

        return [("provision", provision), ("publish", publish), ("deploy", deploy)]

    def _dry_run_steps(
        self, result: PipelineResult
    ) -> list[tuple[str, Callable[[], tuple[Any, str]]]]:
        config = self.config

        def provision() -> tuple[Any, str]:
            change_set = self.planner.plan(config.cluster)
            result.change_set = change_set
            return change_set, f"plan: {change_set.summary()}"

        def publish() -> tuple[Any, str]:
            image = image_reference(
                config.release.source, config.release.dockerfile, config.registry
            )
            result.image = image
            return image, f"would publish {image.uri}"

        def deploy() -> tuple[Any, str]:
            assert result.image is not None  # noqa: S101
            values = build_values(config.release, result.image)
            manifest = render(load_template(config.release.template), values)
            kinds = ", ".join(doc["kind"] for doc in manifest.documents)
            return manifest, f"would apply {kinds} to {config.release.namespace}"

        return [("provision", provision), ("publish", publish), ("deploy", deploy)]
