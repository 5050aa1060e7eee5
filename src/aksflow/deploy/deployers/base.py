"""Base interface for cluster deployers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import TYPE_CHECKING

from aksflow.models.release import RolloutSnapshot

if TYPE_CHECKING:
    from aksflow.deploy.manifest import Manifest


class BaseDeployer(ABC):
    """Abstract base class for the cluster a release is rolled out to."""

    @abstractmethod
    def apply_manifest(self, manifest: Manifest, namespace: str) -> None:
        """Submit every object of a rendered manifest to the cluster.

        Objects that do not exist are created; existing ones are updated
        in place. Returns once the API server accepted the objects, not
        when the rollout completes.

        Args:
            manifest: Rendered manifest.
            namespace: Target namespace (created when missing).

        Raises:
            AuthorizationError: If the cluster rejects the credentials.
            PlatformTransientError: On throttling or API server errors.
            DeploymentError: If an object is rejected.
        """

    @abstractmethod
    def get_rollout_snapshot(self, namespace: str, name: str) -> RolloutSnapshot:
        """Read the current rollout state of a Deployment.

        Args:
            namespace: Deployment namespace.
            name: Deployment name.

        Returns:
            Replica counts plus the state of the pods of the newest revision.

        Raises:
            DeploymentError: If the Deployment cannot be read.
        """

    @abstractmethod
    def destroy(self, namespace: str, name: str) -> None:
        """Delete the Deployment and Service of a release.

        Raises:
            DeploymentError: If the delete fails.
        """

    @abstractmethod
    def stream_logs(self, namespace: str, name: str) -> Iterable[str]:
        """Stream recent log lines of the pods of a release.

        Raises:
            NotImplementedError: When log streaming is not supported.
            DeploymentError: If log streaming fails.
        """

    def close(self) -> None:  # noqa: B027
        """Release client resources."""
