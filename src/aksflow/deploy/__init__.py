"""aksflow deployment engine.

This package provides the three pipeline stages: infrastructure planning
and apply against a lease-locked remote state, content-addressed image
publishing, and Kubernetes release rollouts.
"""

from aksflow.deploy.builder import (
    BuildResult,
    ContainerBuilder,
    ImagePublisher,
    generate_tag,
    get_oci_labels,
)
from aksflow.deploy.dockerfile import generate_dockerfile
from aksflow.deploy.planner import InfrastructurePlanner
from aksflow.deploy.release import ReleaseDeployer

__all__ = [
    "BuildResult",
    "ContainerBuilder",
    "ImagePublisher",
    "InfrastructurePlanner",
    "ReleaseDeployer",
    "generate_dockerfile",
    "generate_tag",
    "get_oci_labels",
]
