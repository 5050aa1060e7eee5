"""Unit tests for the release deployer and rollout classification."""

from __future__ import annotations

from collections.abc import Callable
from types import SimpleNamespace
from typing import Any

import pytest

from aksflow.deploy.release import (
    ReleaseDeployer,
    classify_snapshot,
    describe_snapshot,
    raise_for_status,
)
from aksflow.deploy.release_store import ReleaseStore
from aksflow.lib.errors import (
    DeploymentError,
    PlatformTransientError,
    RolloutFailedError,
    RolloutTimedOutError,
)
from aksflow.lib.retry import RetryPolicy
from aksflow.models.pipeline import ReleaseConfig
from aksflow.models.release import (
    ImageReference,
    PodState,
    ReleaseRecord,
    RolloutResult,
    RolloutStatus,
)

V1 = ImageReference(
    registry="demoacr.azurecr.io", repository="team/web", tag="sha-111111111111"
)
V2 = ImageReference(
    registry="demoacr.azurecr.io",
    repository="team/web",
    tag="sha-222222222222",
    digest="sha256:" + "b" * 64,
)


@pytest.fixture
def release() -> ReleaseConfig:
    return ReleaseConfig(
        name="web", namespace="apps", replicas=2, timeout_seconds=60, poll_interval=5
    )


def _seed(store: ReleaseStore, image: ImageReference = V1, replicas: int = 2) -> None:
    store.record_success(
        ReleaseRecord(
            name="web",
            namespace="apps",
            image=image,
            replicas=replicas,
            status=RolloutStatus.SUCCEEDED,
        )
    )


@pytest.mark.unit
class TestClassifySnapshot:
    """Tests for mapping cluster observations onto rollout states."""

    def test_no_pods_is_pending(self, snapshots: SimpleNamespace) -> None:
        assert classify_snapshot(snapshots.make()) == RolloutStatus.PENDING

    def test_unscheduled_pods_are_pending(self, snapshots: SimpleNamespace) -> None:
        assert classify_snapshot(snapshots.pending()) == RolloutStatus.PENDING

    def test_partial_rollout_is_progressing(self, snapshots: SimpleNamespace) -> None:
        snapshot = snapshots.make(
            updated=1,
            ready=1,
            available=1,
            pods=[PodState(name="web-0", phase="Running", ready=True)],
        )

        assert classify_snapshot(snapshot) == RolloutStatus.PROGRESSING

    def test_all_replicas_ready_is_succeeded(self, snapshots: SimpleNamespace) -> None:
        assert classify_snapshot(snapshots.healthy()) == RolloutStatus.SUCCEEDED

    def test_unobserved_generation_is_not_succeeded(
        self, snapshots: SimpleNamespace
    ) -> None:
        """Counts from the previous revision do not finish a rollout."""
        snapshot = snapshots.healthy().model_copy(
            update={"generation": 2, "observed_generation": 1}
        )

        assert classify_snapshot(snapshot) == RolloutStatus.PROGRESSING

    @pytest.mark.parametrize(
        "reason", ["CrashLoopBackOff", "ImagePullBackOff", "ErrImagePull"]
    )
    def test_broken_container_is_failed(
        self, snapshots: SimpleNamespace, reason: str
    ) -> None:
        snapshot = snapshots.make(
            pods=[PodState(name="web-0", phase="Pending", waiting_reason=reason)]
        )

        assert classify_snapshot(snapshot) == RolloutStatus.FAILED

    def test_restart_threshold(self, snapshots: SimpleNamespace) -> None:
        snapshot = snapshots.make(
            pods=[PodState(name="web-0", phase="Running", restart_count=3)]
        )

        assert classify_snapshot(snapshot, restart_threshold=3) == RolloutStatus.FAILED
        assert classify_snapshot(snapshot, restart_threshold=4) != RolloutStatus.FAILED

    def test_describe_names_failing_pod(self, snapshots: SimpleNamespace) -> None:
        text = describe_snapshot(snapshots.crash_loop())

        assert text.startswith("1 updated, 0 ready, 0 available of 2")
        assert "web-new is in CrashLoopBackOff" in text


@pytest.mark.unit
class TestRaiseForStatus:
    """Failed and timed-out rollouts surface as distinct errors."""

    def test_failed(self) -> None:
        result = RolloutResult(
            release="web", namespace="apps", status=RolloutStatus.FAILED, message="x"
        )

        with pytest.raises(RolloutFailedError):
            raise_for_status(result, 60)

    def test_timed_out(self) -> None:
        result = RolloutResult(
            release="web", namespace="apps", status=RolloutStatus.TIMED_OUT
        )

        with pytest.raises(RolloutTimedOutError) as exc_info:
            raise_for_status(result, 60)

        assert not isinstance(exc_info.value, RolloutFailedError)
        assert exc_info.value.timeout == 60

    def test_succeeded_passes_through(self) -> None:
        result = RolloutResult(
            release="web", namespace="apps", status=RolloutStatus.SUCCEEDED
        )

        assert raise_for_status(result, 60) is result


@pytest.mark.unit
class TestReleaseDeployer:
    """Tests for rolling out a release and recording the outcome."""

    def test_healthy_rollout_becomes_current_record(
        self,
        release: ReleaseConfig,
        release_store: ReleaseStore,
        fake_deployer: type,
        snapshots: SimpleNamespace,
        make_release_deployer: Callable[..., ReleaseDeployer],
    ) -> None:
        deployer = fake_deployer([snapshots.pending(), snapshots.healthy()])

        result = make_release_deployer(deployer).deploy(release, V2)

        assert result.status == RolloutStatus.SUCCEEDED
        record = release_store.current("apps", "web")
        assert record is not None
        assert record.image == V2
        assert record.replicas == 2
        assert record.revision == 1
        manifest, namespace = deployer.applied[0]
        assert namespace == "apps"
        container = manifest.deployment["spec"]["template"]["spec"]["containers"][0]
        assert container["image"] == V2.pinned_uri

    def test_crash_loop_fails_and_keeps_previous_record(
        self,
        release: ReleaseConfig,
        release_store: ReleaseStore,
        fake_deployer: type,
        snapshots: SimpleNamespace,
        clock: Any,
        make_release_deployer: Callable[..., ReleaseDeployer],
    ) -> None:
        """A crash-looping revision fails before the timeout; V1 stays current."""
        _seed(release_store)
        before = release_store.current("apps", "web")
        deployer = fake_deployer([snapshots.make(), snapshots.crash_loop()])

        result = make_release_deployer(deployer, timeout=60).deploy(release, V2)

        assert result.status == RolloutStatus.FAILED
        assert result.elapsed < 60
        assert clock.now < 60
        assert "CrashLoopBackOff" in result.message
        assert release_store.current("apps", "web") == before
        assert release_store.previous("apps", "web") is None

    def test_pending_pods_time_out(
        self,
        release: ReleaseConfig,
        release_store: ReleaseStore,
        fake_deployer: type,
        snapshots: SimpleNamespace,
        clock: Any,
        make_release_deployer: Callable[..., ReleaseDeployer],
    ) -> None:
        """Pods that never schedule end in timed_out, not failed."""
        _seed(release_store)
        before = release_store.current("apps", "web")
        deployer = fake_deployer([snapshots.pending()])

        result = make_release_deployer(deployer, timeout=60).deploy(release, V2)

        assert result.status == RolloutStatus.TIMED_OUT
        assert result.status != RolloutStatus.FAILED
        assert result.message.startswith("Rollout did not complete within 60s")
        assert clock.now == 60
        assert sum(clock.sleeps) == 60
        assert deployer.snapshot_calls == 13
        assert release_store.current("apps", "web") == before

    def test_timeout_message_uses_configured_restart_threshold(
        self,
        release: ReleaseConfig,
        release_store: ReleaseStore,
        fake_deployer: type,
        snapshots: SimpleNamespace,
        clock: Any,
        no_wait_retry: RetryPolicy,
    ) -> None:
        """Restarts below a raised threshold are not reported as a failure."""
        restarting = snapshots.make(
            pods=[PodState(name="web-0", phase="Running", restart_count=3)]
        )
        release_deployer = ReleaseDeployer(
            fake_deployer([restarting]),
            release_store,
            timeout=60,
            poll_interval=5,
            restart_threshold=5,
            retry=no_wait_retry,
            clock=clock,
            sleep=clock.sleep,
        )

        result = release_deployer.deploy(release, V2)

        assert result.status == RolloutStatus.TIMED_OUT
        assert "0 updated, 0 ready, 0 available of 2" in result.message
        assert "restarted" not in result.message

    def test_last_sleep_is_clamped_to_timeout(
        self,
        release: ReleaseConfig,
        fake_deployer: type,
        snapshots: SimpleNamespace,
        clock: Any,
        make_release_deployer: Callable[..., ReleaseDeployer],
    ) -> None:
        deployer = fake_deployer([snapshots.pending()])

        make_release_deployer(deployer, timeout=12).deploy(release, V2)

        assert clock.sleeps == [5, 5, 2]

    def test_transient_snapshot_errors_are_retried(
        self,
        release: ReleaseConfig,
        fake_deployer: type,
        snapshots: SimpleNamespace,
        make_release_deployer: Callable[..., ReleaseDeployer],
    ) -> None:
        failures = [PlatformTransientError("rollout", "503")]

        def next_snapshot() -> Any:
            if failures:
                raise failures.pop()
            return snapshots.healthy()

        result = make_release_deployer(fake_deployer(next_snapshot)).deploy(
            release, V2
        )

        assert result.succeeded

    def test_replica_override(
        self,
        release: ReleaseConfig,
        release_store: ReleaseStore,
        fake_deployer: type,
        snapshots: SimpleNamespace,
        make_release_deployer: Callable[..., ReleaseDeployer],
    ) -> None:
        deployer = fake_deployer([snapshots.healthy(replicas=4)])

        make_release_deployer(deployer).deploy(release, V2, replicas=4)

        manifest, _ = deployer.applied[0]
        assert manifest.deployment["spec"]["replicas"] == 4
        record = release_store.current("apps", "web")
        assert record is not None
        assert record.replicas == 4


@pytest.mark.unit
class TestRollback:
    """Rollback is explicit and re-applies the previous record."""

    def test_rollback_reapplies_previous_image(
        self,
        release: ReleaseConfig,
        release_store: ReleaseStore,
        fake_deployer: type,
        snapshots: SimpleNamespace,
        make_release_deployer: Callable[..., ReleaseDeployer],
    ) -> None:
        _seed(release_store, V1, replicas=3)
        _seed(release_store, V2, replicas=2)
        deployer = fake_deployer([snapshots.healthy(replicas=3)])

        result = make_release_deployer(deployer).rollback(release)

        assert result.succeeded
        manifest, _ = deployer.applied[0]
        container = manifest.deployment["spec"]["template"]["spec"]["containers"][0]
        assert container["image"] == V1.uri
        assert manifest.deployment["spec"]["replicas"] == 3
        current = release_store.current("apps", "web")
        assert current is not None
        assert current.image == V1
        assert current.revision == 3

    def test_rollback_without_previous_raises(
        self,
        release: ReleaseConfig,
        release_store: ReleaseStore,
        fake_deployer: type,
        make_release_deployer: Callable[..., ReleaseDeployer],
    ) -> None:
        _seed(release_store)
        deployer = fake_deployer()

        with pytest.raises(DeploymentError, match="No previous release"):
            make_release_deployer(deployer).rollback(release)

        assert deployer.applied == []

    def test_destroy_forgets_history(
        self,
        release: ReleaseConfig,
        release_store: ReleaseStore,
        fake_deployer: type,
        make_release_deployer: Callable[..., ReleaseDeployer],
    ) -> None:
        _seed(release_store)
        deployer = fake_deployer()

        make_release_deployer(deployer).destroy(release)

        assert deployer.destroyed == [("apps", "web")]
        assert release_store.current("apps", "web") is None
