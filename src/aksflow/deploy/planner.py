"""Infrastructure planner: diff desired AKS resources against remote state.

``plan`` is pure with respect to the platform: it reads the remote state
and computes a ChangeSet without calling the provisioner. ``apply``
executes a ChangeSet under a held lease and commits the new state only if
every operation succeeded.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable, Mapping
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from aksflow.config.validator import validate_cluster_config
from aksflow.deploy.provisioners.base import BaseProvisioner
from aksflow.deploy.state import (
    BaseStateBackend,
    Lease,
    compute_config_hash,
    state_lock,
)
from aksflow.lib.errors import (
    DeploymentError,
    StalePlanError,
    StateLockUnavailableError,
)
from aksflow.lib.logging_config import get_logger
from aksflow.lib.retry import RetryPolicy
from aksflow.models.changeset import ChangeAction, ChangeSet, ResourceChange
from aksflow.models.infrastructure import (
    ClusterConfig,
    ResourceKind,
    ResourceSpec,
    desired_resources,
)
from aksflow.models.pipeline import PipelineConfig
from aksflow.models.state import ClusterOutputs, InfrastructureState

logger = get_logger(__name__)


def _changed_fields(before: Mapping[str, Any], after: Mapping[str, Any]) -> list[str]:
    keys = set(before) | set(after)
    return sorted(key for key in keys if before.get(key) != after.get(key))


def _parent_address(kind: ResourceKind, properties: Mapping[str, Any]) -> str | None:
    """Address of the resource that owns this one, if any."""
    if kind == ResourceKind.NODE_POOL:
        return f"{ResourceKind.KUBERNETES_CLUSTER.value}.{properties['cluster_name']}"
    if kind in (ResourceKind.LOG_ANALYTICS_WORKSPACE, ResourceKind.KUBERNETES_CLUSTER):
        return (
            f"{ResourceKind.RESOURCE_GROUP.value}."
            f"{properties['resource_group_name']}"
        )
    return None


def diff(
    desired: list[ResourceSpec], state: InfrastructureState
) -> list[ResourceChange]:
    """Compute ordered changes turning ``state`` into ``desired``.

    Creates and updates come first in dependency order, then deletes of
    resources no longer desired in reverse dependency order.
    """
    changes: list[ResourceChange] = []
    desired_addresses = set()

    for spec in sorted(desired, key=lambda s: s.kind.order):
        desired_addresses.add(spec.address)
        recorded = state.resources.get(spec.address)
        if recorded is None:
            changes.append(
                ResourceChange(
                    action=ChangeAction.CREATE,
                    kind=spec.kind,
                    name=spec.name,
                    after=dict(spec.properties),
                    changed_fields=sorted(spec.properties),
                )
            )
            continue
        before = recorded.get("properties", {})
        changed = _changed_fields(before, spec.properties)
        if changed:
            changes.append(
                ResourceChange(
                    action=ChangeAction.UPDATE,
                    kind=spec.kind,
                    name=spec.name,
                    before=dict(before),
                    after=dict(spec.properties),
                    changed_fields=changed,
                )
            )

    stale = [
        entry
        for address, entry in state.resources.items()
        if address not in desired_addresses
    ]
    for entry in sorted(
        stale, key=lambda e: ResourceKind(e["kind"]).order, reverse=True
    ):
        changes.append(
            ResourceChange(
                action=ChangeAction.DELETE,
                kind=ResourceKind(entry["kind"]),
                name=entry["name"],
                before=dict(entry.get("properties", {})),
            )
        )
    return changes


def save_plan(path: str | Path, change_set: ChangeSet) -> Path:
    """Write a plan to disk with sensitive values masked."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(change_set.redacted(), indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )
    return path


class InfrastructurePlanner:
    """Plans and applies AKS infrastructure against a leased remote state."""

    def __init__(
        self,
        provisioner: BaseProvisioner,
        backend: BaseStateBackend,
        retry: RetryPolicy | None = None,
        lease_duration: int = 60,
        lock_attempts: int = 5,
        lock_backoff: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provisioner = provisioner
        self.backend = backend
        self.retry = retry or RetryPolicy(sleep=sleep)
        self.lease_duration = lease_duration
        self.lock_attempts = lock_attempts
        self.lock_backoff = lock_backoff
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        provisioner: BaseProvisioner,
        backend: BaseStateBackend,
    ) -> InfrastructurePlanner:
        return cls(
            provisioner,
            backend,
            retry=RetryPolicy.from_config(config.retry),
            lease_duration=config.state.lease_duration,
            lock_attempts=config.state.lock_attempts,
            lock_backoff=config.state.lock_backoff,
        )

    def lock(self, keep_alive: bool = False) -> AbstractContextManager[Lease]:
        """Context manager holding the state lease."""
        return state_lock(
            self.backend,
            duration=self.lease_duration,
            attempts=self.lock_attempts,
            backoff=self.lock_backoff,
            keep_alive=keep_alive,
            sleep=self._sleep,
        )

    def plan(
        self,
        config: ClusterConfig | Mapping[str, Any],
        lease: Lease | None = None,
    ) -> ChangeSet:
        """Compute the ChangeSet for a configuration.

        Args:
            config: Cluster configuration (validated again before any call)
            lease: A lease already held by the caller; when omitted a short
                lease is taken for the read

        Returns:
            The ordered ChangeSet; empty when nothing needs to change

        Raises:
            ConfigInvalidError: If the configuration violates an invariant.
                No external call has been made at that point.
            StateLockUnavailableError: If the state stays locked.
        """
        validated = validate_cluster_config(config)
        desired = desired_resources(validated)

        if lease is None:
            with self.lock():
                state, _ = self.backend.read()
        else:
            state, _ = self.backend.read()

        change_set = ChangeSet(
            changes=diff(desired, state),
            base_serial=state.serial,
            lineage=state.lineage,
            config_hash=compute_config_hash(validated),
        )
        logger.info(f"Plan: {change_set.summary()}")
        return change_set

    def _check_lease(self, lease: Lease) -> None:
        if lease.expired:
            raise StateLockUnavailableError(
                lease.key, f"Lease {lease.lease_id} on state '{lease.key}' has expired"
            )

    def _check_base(self, change_set: ChangeSet, state: InfrastructureState) -> None:
        # A state that was never committed gets a fresh lineage on every read
        lineage_moved = (
            state.serial > 0
            and change_set.lineage is not None
            and state.lineage != change_set.lineage
        )
        if state.serial != change_set.base_serial or lineage_moved:
            raise StalePlanError(change_set.base_serial, state.serial)

    def apply(self, change_set: ChangeSet, lease: Lease) -> InfrastructureState:
        """Execute a ChangeSet and commit the resulting state.

        The state is written once, after every operation succeeded. A
        failure part-way leaves the last committed state in place; the
        next plan then shows the remaining work.

        Raises:
            StateLockUnavailableError: If the lease has expired or was lost.
            StalePlanError: If the state changed since the plan was made.
            AuthorizationError: Immediately, without retries.
            QuotaExceededError: Immediately, without retries.
            PlatformTransientError: Once retries are exhausted.
        """
        self._check_lease(lease)
        state, _ = self.backend.read()
        self._check_base(change_set, state)

        if change_set.is_empty:
            logger.info("No changes. Infrastructure is up-to-date.")
            return state

        resources = {
            address: dict(entry) for address, entry in state.resources.items()
        }
        applied: dict[str, dict[str, Any]] = {
            address: dict(entry.get("attributes", {}))
            for address, entry in resources.items()
        }
        deleting = {
            change.address
            for change in change_set.changes
            if change.action == ChangeAction.DELETE
        }

        for change in change_set.changes:
            if change.action == ChangeAction.DELETE:
                spec = ResourceSpec(
                    kind=change.kind, name=change.name, properties=change.before or {}
                )
                if _parent_address(spec.kind, spec.properties) in deleting:
                    logger.info(f"{spec.address} is removed with its parent")
                else:
                    logger.info(f"Destroying {spec.address}")
                    self.retry.call(self.provisioner.delete, spec)
                resources.pop(spec.address, None)
                applied.pop(spec.address, None)
                continue

            spec = ResourceSpec(
                kind=change.kind, name=change.name, properties=change.after or {}
            )
            verb = "Creating" if change.action == ChangeAction.CREATE else "Updating"
            logger.info(f"{verb} {spec.address}")
            attributes = self.retry.call(
                self.provisioner.create_or_update, spec, applied
            )
            applied[spec.address] = dict(attributes)
            resources[spec.address] = {
                "kind": spec.kind.value,
                "name": spec.name,
                "properties": dict(spec.properties),
                "attributes": dict(attributes),
            }

        outputs = self._fetch_outputs(resources)

        # The lease may have lapsed during a long apply
        self._check_lease(lease)
        new_state = state.model_copy(
            update={
                "serial": state.serial + 1,
                "resources": resources,
                "outputs": outputs,
                "updated_at": datetime.now(timezone.utc),
            }
        )
        self.backend.write(new_state, lease)
        logger.info(
            f"Apply complete: {change_set.summary()} (state serial {new_state.serial})"
        )
        return new_state

    def _fetch_outputs(
        self, resources: Mapping[str, Mapping[str, Any]]
    ) -> ClusterOutputs | None:
        for entry in resources.values():
            if entry["kind"] == ResourceKind.KUBERNETES_CLUSTER.value:
                cluster = ResourceSpec(
                    kind=ResourceKind.KUBERNETES_CLUSTER,
                    name=entry["name"],
                    properties=entry.get("properties", {}),
                )
                return self.retry.call(self.provisioner.get_cluster_outputs, cluster)
        return None

    def plan_and_apply(
        self, config: ClusterConfig | Mapping[str, Any]
    ) -> tuple[ChangeSet, InfrastructureState]:
        """Plan and apply under one lease, renewed while the apply runs."""
        validated = validate_cluster_config(config)
        with self.lock(keep_alive=True) as lease:
            change_set = self.plan(validated, lease=lease)
            state = self.apply(change_set, lease)
        return change_set, state

    def outputs(self) -> ClusterOutputs:
        """Cluster outputs of the last committed apply.

        Raises:
            DeploymentError: If no apply has produced a cluster yet.
        """
        state, _ = self.backend.read()
        if state.outputs is None:
            raise DeploymentError(
                operation="outputs",
                message=(
                    f"State '{self.backend.key}' has no cluster outputs. "
                    "Run 'aksflow infra apply' first."
                ),
            )
        return state.outputs

    def destroy(self) -> ChangeSet:
        """Delete every recorded resource and commit an empty state."""
        with self.lock(keep_alive=True) as lease:
            state, _ = self.backend.read()
            change_set = ChangeSet(
                changes=diff([], state),
                base_serial=state.serial,
                lineage=state.lineage,
            )
            self.apply(change_set, lease)
        return change_set
