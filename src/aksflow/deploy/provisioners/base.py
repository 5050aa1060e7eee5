"""Base interface for infrastructure provisioners."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from aksflow.models.infrastructure import ResourceSpec
from aksflow.models.state import ClusterOutputs


class BaseProvisioner(ABC):
    """Abstract base class for platform provisioners.

    A provisioner performs single-resource operations against the target
    platform. Ordering, diffing and state persistence belong to the planner.
    """

    @abstractmethod
    def create_or_update(
        self,
        spec: ResourceSpec,
        applied: Mapping[str, Mapping[str, Any]],
    ) -> dict[str, Any]:
        """Create or update one resource and return its platform attributes.

        Args:
            spec: Desired resource description.
            applied: Attributes of resources already applied in this run or
                recorded in state, keyed by address (used to resolve
                references such as the Log Analytics workspace id).

        Returns:
            Platform attributes to record in state (at least ``id``).

        Raises:
            PlatformTransientError: On rate limiting or consistency lag.
            AuthorizationError: If credentials are rejected.
            QuotaExceededError: If the subscription quota is exhausted.
            DeploymentError: On any other failure.
        """

    @abstractmethod
    def delete(self, spec: ResourceSpec) -> None:
        """Delete one resource. Deleting a missing resource is not an error.

        Raises:
            Same taxonomy as ``create_or_update``.
        """

    @abstractmethod
    def get_cluster_outputs(self, cluster: ResourceSpec) -> ClusterOutputs:
        """Fetch endpoint, credentials and node resource group of a cluster.

        Raises:
            Same taxonomy as ``create_or_update``.
        """
