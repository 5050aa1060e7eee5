"""Release deployer: render, apply and watch a rollout to a terminal state.

There is no automatic rollback. A failed or timed-out rollout leaves the
previous release record authoritative and the cluster as the rollout left
it; ``rollback`` is an explicit operation.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from aksflow.config.defaults import FAILED_WAITING_REASONS
from aksflow.deploy.deployers.base import BaseDeployer
from aksflow.deploy.manifest import Manifest, build_values, load_template, render
from aksflow.deploy.release_store import ReleaseStore
from aksflow.lib.errors import DeploymentError, RolloutFailedError, RolloutTimedOutError
from aksflow.lib.logging_config import get_logger
from aksflow.lib.retry import RetryPolicy
from aksflow.models.pipeline import ReleaseConfig
from aksflow.models.release import (
    ImageReference,
    ReleaseRecord,
    RolloutResult,
    RolloutSnapshot,
    RolloutStatus,
)

logger = get_logger(__name__)


def _failing_pod(snapshot: RolloutSnapshot, restart_threshold: int) -> str | None:
    for pod in snapshot.pods:
        if pod.waiting_reason in FAILED_WAITING_REASONS:
            return f"pod {pod.name} is in {pod.waiting_reason}"
        if pod.restart_count >= restart_threshold:
            return f"pod {pod.name} restarted {pod.restart_count} times"
    return None


def classify_snapshot(
    snapshot: RolloutSnapshot, restart_threshold: int = 3
) -> RolloutStatus:
    """Map one observation of a rollout onto the rollout state machine.

    A crash-looping or unpullable pod of the new revision fails the rollout
    immediately. Pods that are merely unscheduled stay ``pending``.
    """
    if _failing_pod(snapshot, restart_threshold):
        return RolloutStatus.FAILED
    desired = snapshot.desired_replicas
    if (
        snapshot.observed
        and snapshot.updated_replicas >= desired
        and snapshot.ready_replicas >= desired
        and snapshot.available_replicas >= desired
    ):
        return RolloutStatus.SUCCEEDED
    if snapshot.updated_replicas > 0 or any(
        pod.phase == "Running" for pod in snapshot.pods
    ):
        return RolloutStatus.PROGRESSING
    return RolloutStatus.PENDING


def describe_snapshot(snapshot: RolloutSnapshot, restart_threshold: int = 3) -> str:
    """Human-readable summary of a rollout observation."""
    counts = (
        f"{snapshot.updated_replicas} updated, {snapshot.ready_replicas} ready, "
        f"{snapshot.available_replicas} available of {snapshot.desired_replicas}"
    )
    failure = _failing_pod(snapshot, restart_threshold)
    return f"{counts}; {failure}" if failure else counts


def raise_for_status(result: RolloutResult, timeout: float) -> RolloutResult:
    """Raise the stage error matching a non-succeeded rollout."""
    if result.status == RolloutStatus.FAILED:
        raise RolloutFailedError(result.release, result.message)
    if result.status == RolloutStatus.TIMED_OUT:
        raise RolloutTimedOutError(result.release, timeout, result.message)
    return result


class ReleaseDeployer:
    """Applies manifests and polls the cluster until the rollout settles."""

    def __init__(
        self,
        deployer: BaseDeployer,
        store: ReleaseStore,
        timeout: float = 300,
        poll_interval: float = 5,
        restart_threshold: int = 3,
        retry: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.deployer = deployer
        self.store = store
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.restart_threshold = restart_threshold
        self.retry = retry or RetryPolicy(sleep=sleep)
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        deployer: BaseDeployer,
        store: ReleaseStore,
        release: ReleaseConfig,
        retry: RetryPolicy | None = None,
    ) -> ReleaseDeployer:
        return cls(
            deployer,
            store,
            timeout=release.timeout_seconds,
            poll_interval=release.poll_interval,
            restart_threshold=release.crash_restart_threshold,
            retry=retry,
        )

    def render(self, template: str, values: Mapping[str, Any]) -> Manifest:
        return render(template, values)

    def _wait(
        self, namespace: str, name: str, started: float
    ) -> tuple[RolloutStatus, RolloutSnapshot | None]:
        status = RolloutStatus.PENDING
        snapshot: RolloutSnapshot | None = None
        while True:
            snapshot = self.retry.call(
                self.deployer.get_rollout_snapshot, namespace, name
            )
            observed = classify_snapshot(snapshot, self.restart_threshold)
            if observed != status:
                logger.info(
                    f"Rollout {namespace}/{name}: {observed.value} "
                    f"({describe_snapshot(snapshot, self.restart_threshold)})"
                )
                status = observed
            if status.is_terminal:
                return status, snapshot

            elapsed = self._clock() - started
            if elapsed >= self.timeout:
                return RolloutStatus.TIMED_OUT, snapshot
            self._sleep(min(self.poll_interval, self.timeout - elapsed))

    def apply_manifest(
        self,
        manifest: Manifest,
        namespace: str,
        image: ImageReference,
        replicas: int,
    ) -> RolloutResult:
        """Submit a manifest and wait for the rollout to reach a terminal state.

        Returns:
            RolloutResult with status ``succeeded``, ``failed`` or
            ``timed_out``. Only ``succeeded`` replaces the release record.
        """
        name = manifest.deployment["metadata"]["name"]
        started = self._clock()
        logger.info(f"Applying release {namespace}/{name} ({image.pinned_uri})")
        self.retry.call(self.deployer.apply_manifest, manifest, namespace)

        status, snapshot = self._wait(namespace, name, started)
        elapsed = self._clock() - started

        if status == RolloutStatus.TIMED_OUT:
            message = f"Rollout did not complete within {self.timeout:g}s"
            if snapshot is not None:
                message += f" ({describe_snapshot(snapshot, self.restart_threshold)})"
        elif snapshot is not None:
            message = describe_snapshot(snapshot, self.restart_threshold)
        else:
            message = ""

        result = RolloutResult(
            release=name,
            namespace=namespace,
            status=status,
            message=message,
            elapsed=elapsed,
            snapshot=snapshot,
        )

        if status == RolloutStatus.SUCCEEDED:
            record = self.store.record_success(
                ReleaseRecord(
                    name=name,
                    namespace=namespace,
                    image=image,
                    replicas=replicas,
                    status=status,
                    values_hash=manifest.values_hash,
                    created_at=datetime.now(timezone.utc),
                )
            )
            logger.info(
                f"Release {namespace}/{name} revision {record.revision} succeeded "
                f"in {elapsed:.1f}s"
            )
        else:
            current = self.store.current(namespace, name)
            kept = f"revision {current.revision}" if current else "no release"
            logger.error(
                f"Release {namespace}/{name} {status.value}: {message}. "
                f"Release record unchanged ({kept})."
            )
        return result

    def deploy(
        self,
        release: ReleaseConfig,
        image: ImageReference,
        replicas: int | None = None,
    ) -> RolloutResult:
        """Render the release template for an image and roll it out."""
        values = build_values(release, image, replicas=replicas)
        manifest = self.render(load_template(release.template), values)
        return self.apply_manifest(
            manifest, release.namespace, image, replicas=values["replicas"]
        )

    def rollback(self, release: ReleaseConfig) -> RolloutResult:
        """Re-apply the previous release record's image and replica count.

        Raises:
            DeploymentError: If there is no previous release to return to.
        """
        previous = self.store.previous(release.namespace, release.name)
        if previous is None:
            raise DeploymentError(
                operation="rollback",
                message=(
                    f"No previous release recorded for "
                    f"{release.namespace}/{release.name}"
                ),
            )
        logger.info(
            f"Rolling back {release.namespace}/{release.name} to "
            f"{previous.image.pinned_uri} (revision {previous.revision})"
        )
        return self.deploy(release, previous.image, replicas=previous.replicas)

    def destroy(self, release: ReleaseConfig) -> None:
        self.retry.call(self.deployer.destroy, release.namespace, release.name)
        self.store.forget(release.namespace, release.name)
