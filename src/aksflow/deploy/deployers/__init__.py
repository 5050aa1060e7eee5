"""Cluster deployers for aksflow releases."""

from __future__ import annotations

from aksflow.deploy.deployers.base import BaseDeployer
from aksflow.models.state import ClusterOutputs


def create_deployer(outputs: ClusterOutputs) -> BaseDeployer:
    """Create a deployer for the cluster recorded in infrastructure outputs."""
    from aksflow.deploy.deployers.kubernetes_cluster import KubernetesDeployer

    return KubernetesDeployer(outputs.credentials)


__all__ = ["BaseDeployer", "create_deployer"]
