"""In-memory fakes for the provisioner, cluster and clock used by unit tests."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from aksflow.deploy.deployers.base import BaseDeployer
from aksflow.deploy.planner import InfrastructurePlanner
from aksflow.deploy.provisioners.base import BaseProvisioner
from aksflow.deploy.release import ReleaseDeployer
from aksflow.deploy.release_store import ReleaseStore
from aksflow.deploy.state import LocalStateBackend
from aksflow.lib.retry import RetryPolicy
from aksflow.models.infrastructure import ResourceSpec
from aksflow.models.release import PodState, RolloutSnapshot
from aksflow.models.state import ClusterCredentials, ClusterOutputs


class FakeClock:
    """Monotonic clock whose sleep advances time instead of blocking."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeProvisioner(BaseProvisioner):
    """Records every platform call; optionally fails per address."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[str, list[Exception]] = {}

    def fail(self, address: str, *errors: Exception) -> None:
        self.failures[address] = list(errors)

    def _maybe_fail(self, address: str) -> None:
        pending = self.failures.get(address)
        if pending:
            raise pending.pop(0)

    def create_or_update(
        self, spec: ResourceSpec, applied: Mapping[str, Mapping[str, Any]]
    ) -> dict[str, Any]:
        self.calls.append(("create_or_update", spec.address))
        self._maybe_fail(spec.address)
        return {"id": f"/fake/{spec.address}"}

    def delete(self, spec: ResourceSpec) -> None:
        self.calls.append(("delete", spec.address))
        self._maybe_fail(spec.address)

    def get_cluster_outputs(self, cluster: ResourceSpec) -> ClusterOutputs:
        self.calls.append(("get_cluster_outputs", cluster.address))
        return ClusterOutputs(
            cluster_name=cluster.name,
            resource_group_name=cluster.properties["resource_group_name"],
            node_resource_group=f"MC_{cluster.name}",
            credentials=ClusterCredentials(
                host=f"https://{cluster.name}.hcp.eastus.azmk8s.io:443",
                cluster_ca_certificate="Y2EtZGF0YQ==",
                client_certificate="Y2VydC1kYXRh",
                client_key="a2V5LWRhdGE=",
            ),
        )

    def addresses(self, operation: str) -> list[str]:
        return [address for op, address in self.calls if op == operation]


class FakeDeployer(BaseDeployer):
    """Cluster fake returning scripted rollout snapshots."""

    def __init__(
        self,
        snapshots: Iterable[RolloutSnapshot] | Callable[[], RolloutSnapshot] = (),
    ) -> None:
        if callable(snapshots):
            self._next = snapshots
        else:
            scripted = list(snapshots)

            def _next() -> RolloutSnapshot:
                return scripted.pop(0) if len(scripted) > 1 else scripted[0]

            self._next = _next
        self.applied: list[tuple[Any, str]] = []
        self.destroyed: list[tuple[str, str]] = []
        self.snapshot_calls = 0
        self.closed = False

    def apply_manifest(self, manifest: Any, namespace: str) -> None:
        self.applied.append((manifest, namespace))

    def get_rollout_snapshot(self, namespace: str, name: str) -> RolloutSnapshot:
        self.snapshot_calls += 1
        return self._next()

    def destroy(self, namespace: str, name: str) -> None:
        self.destroyed.append((namespace, name))

    def stream_logs(self, namespace: str, name: str) -> Iterable[str]:
        return iter([f"[{name}-pod] started"])

    def close(self) -> None:
        self.closed = True


def make_snapshot(
    desired: int = 2,
    updated: int = 0,
    ready: int = 0,
    available: int = 0,
    pods: list[PodState] | None = None,
) -> RolloutSnapshot:
    return RolloutSnapshot(
        desired_replicas=desired,
        updated_replicas=updated,
        ready_replicas=ready,
        available_replicas=available,
        observed_generation=1,
        generation=1,
        pods=pods or [],
    )


def healthy_snapshot(replicas: int = 2) -> RolloutSnapshot:
    return make_snapshot(
        desired=replicas,
        updated=replicas,
        ready=replicas,
        available=replicas,
        pods=[
            PodState(name=f"web-{i}", phase="Running", ready=True)
            for i in range(replicas)
        ],
    )


def crash_loop_snapshot(replicas: int = 2) -> RolloutSnapshot:
    return make_snapshot(
        desired=replicas,
        updated=1,
        pods=[
            PodState(
                name="web-new",
                phase="Running",
                waiting_reason="CrashLoopBackOff",
                restart_count=4,
            )
        ],
    )


def pending_snapshot(replicas: int = 2) -> RolloutSnapshot:
    return make_snapshot(
        desired=replicas,
        pods=[
            PodState(name=f"web-{i}", phase="Pending", waiting_reason=None)
            for i in range(replicas)
        ],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest.fixture
def backend(tmp_path: Path) -> LocalStateBackend:
    return LocalStateBackend(tmp_path / "state", "aksflow.tfstate")


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0, jitter=0, sleep=lambda _: None)


@pytest.fixture
def planner(
    provisioner: FakeProvisioner,
    backend: LocalStateBackend,
    no_wait_retry: RetryPolicy,
) -> InfrastructurePlanner:
    return InfrastructurePlanner(
        provisioner,
        backend,
        retry=no_wait_retry,
        lock_attempts=1,
        sleep=lambda _: None,
    )


@pytest.fixture
def release_store(backend: LocalStateBackend) -> ReleaseStore:
    """Release records next to the test state, in releases.json."""
    return ReleaseStore(backend)


@pytest.fixture
def make_release_deployer(
    release_store: ReleaseStore,
    clock: FakeClock,
    no_wait_retry: RetryPolicy,
) -> Callable[..., ReleaseDeployer]:
    def _make(deployer: BaseDeployer, timeout: float = 60) -> ReleaseDeployer:
        return ReleaseDeployer(
            deployer,
            release_store,
            timeout=timeout,
            poll_interval=5,
            restart_threshold=3,
            retry=no_wait_retry,
            clock=clock,
            sleep=clock.sleep,
        )

    return _make


@pytest.fixture
def snapshots() -> SimpleNamespace:
    """Builders for scripted rollout observations."""
    return SimpleNamespace(
        make=make_snapshot,
        healthy=healthy_snapshot,
        crash_loop=crash_loop_snapshot,
        pending=pending_snapshot,
    )


@pytest.fixture
def fake_deployer() -> type[FakeDeployer]:
    return FakeDeployer


@pytest.fixture
def fake_provisioner() -> type[FakeProvisioner]:
    return FakeProvisioner
