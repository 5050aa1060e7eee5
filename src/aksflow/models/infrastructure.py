"""Pydantic models for the desired AKS infrastructure.

``ClusterConfig`` is the deployment configuration supplied at pipeline
invocation. ``desired_resources`` expands it into the ordered resource
descriptions the planner diffs against the remote state.
"""

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DNS_PREFIX_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9-]{0,52}[a-zA-Z0-9]$|^[a-zA-Z]$")
NODE_POOL_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9]{0,11}$")


class ResourceKind(str, Enum):
    """Kinds of Azure resources managed by the planner.

    Declaration order is dependency order: a resource only depends on
    kinds declared before it.
    """

    RESOURCE_GROUP = "resource_group"
    LOG_ANALYTICS_WORKSPACE = "log_analytics_workspace"
    KUBERNETES_CLUSTER = "kubernetes_cluster"
    NODE_POOL = "node_pool"

    @property
    def order(self) -> int:
        return list(ResourceKind).index(self)


class ClusterConfig(BaseModel):
    """AKS deployment configuration.

    Attributes:
        location: Azure region
        resource_group_name: Resource group holding the cluster
        cluster_name: AKS cluster name
        dns_prefix: DNS prefix for the API server FQDN
        kubernetes_version: Optional pinned Kubernetes version
        node_pool_name: Name of the default (system) node pool
        node_count: Node count (initial count when autoscaling)
        vm_size: VM SKU for the node pool
        enable_auto_scaling: Enable the cluster autoscaler on the pool
        min_node_count: Autoscaler lower bound
        max_node_count: Autoscaler upper bound
        enable_log_analytics: Create a Log Analytics workspace for container insights
        log_analytics_sku: Workspace SKU
        log_retention_days: Workspace retention in days
        tags: Tags applied to every resource
    """

    model_config = ConfigDict(extra="forbid")

    location: str = Field(default="eastus", description="Azure region")
    resource_group_name: str = Field(
        default="aks-resource-group", description="Resource group name"
    )
    cluster_name: str = Field(default="aks-cluster", description="AKS cluster name")
    dns_prefix: str = Field(default="aksflow", description="API server DNS prefix")
    kubernetes_version: str | None = Field(
        default=None, description="Kubernetes version (provider default when unset)"
    )
    node_pool_name: str = Field(default="default", description="Node pool name")
    node_count: int = Field(default=1, ge=0, le=1000, description="Node count")
    vm_size: str = Field(default="Standard_D2s_v3", description="Node VM size")
    enable_auto_scaling: bool = Field(
        default=False, description="Enable the cluster autoscaler"
    )
    min_node_count: int = Field(default=1, ge=0, le=1000, description="Min nodes")
    max_node_count: int = Field(default=3, ge=1, le=1000, description="Max nodes")
    enable_log_analytics: bool = Field(
        default=False, description="Create a Log Analytics workspace"
    )
    log_analytics_sku: str = Field(default="PerGB2018", description="Workspace SKU")
    log_retention_days: int = Field(
        default=30, ge=30, le=730, description="Workspace retention in days"
    )
    tags: dict[str, str] = Field(default_factory=dict, description="Resource tags")

    @field_validator(
        "location", "resource_group_name", "cluster_name", "vm_size", "node_pool_name"
    )
    @classmethod
    def validate_non_empty(cls, v: str) -> str:
        """Reject empty or whitespace-only names."""
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v

    @field_validator("dns_prefix")
    @classmethod
    def validate_dns_prefix(cls, v: str) -> str:
        """Validate the DNS prefix pattern accepted by AKS."""
        if not DNS_PREFIX_PATTERN.match(v):
            raise ValueError(
                f"Invalid dns_prefix: {v!r}. Must start with a letter, contain only "
                "letters, digits and hyphens, and be at most 54 characters."
            )
        return v

    @field_validator("node_pool_name")
    @classmethod
    def validate_node_pool_name(cls, v: str) -> str:
        """Validate the node pool name (lowercase alphanumeric, max 12)."""
        if not NODE_POOL_NAME_PATTERN.match(v):
            raise ValueError(
                f"Invalid node_pool_name: {v!r}. Must be 1-12 lowercase "
                "alphanumeric characters starting with a letter."
            )
        return v

    @model_validator(mode="after")
    def validate_node_count_bounds(self) -> "ClusterConfig":
        """Enforce min_node_count <= node_count <= max_node_count when autoscaling."""
        if not self.enable_auto_scaling:
            if self.node_count < 1:
                raise ValueError("node_count must be >= 1 when autoscaling is disabled")
            return self
        if self.min_node_count > self.max_node_count:
            raise ValueError(
                f"min_node_count ({self.min_node_count}) must be <= "
                f"max_node_count ({self.max_node_count})"
            )
        if not self.min_node_count <= self.node_count <= self.max_node_count:
            raise ValueError(
                f"node_count ({self.node_count}) must be within "
                f"[{self.min_node_count}, {self.max_node_count}] "
                "when enable_auto_scaling is true"
            )
        return self

    @property
    def workspace_name(self) -> str:
        """Name of the Log Analytics workspace for this cluster."""
        return f"{self.cluster_name}-logs"


class ResourceSpec(BaseModel):
    """Desired description of one managed resource."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: ResourceKind
    name: str
    properties: dict[str, Any] = Field(default_factory=dict)

    @property
    def address(self) -> str:
        """Stable state address, ``<kind>.<name>``."""
        return f"{self.kind.value}.{self.name}"


def desired_resources(config: ClusterConfig) -> list[ResourceSpec]:
    """Expand a cluster configuration into ordered resource descriptions.

    Args:
        config: Validated cluster configuration

    Returns:
        Resource specs in dependency order. The Log Analytics workspace is
        only present when ``enable_log_analytics`` is set.
    """
    tags = dict(sorted(config.tags.items()))
    resources = [
        ResourceSpec(
            kind=ResourceKind.RESOURCE_GROUP,
            name=config.resource_group_name,
            properties={"location": config.location, "tags": tags},
        )
    ]

    workspace_address = None
    if config.enable_log_analytics:
        workspace = ResourceSpec(
            kind=ResourceKind.LOG_ANALYTICS_WORKSPACE,
            name=config.workspace_name,
            properties={
                "location": config.location,
                "resource_group_name": config.resource_group_name,
                "sku": config.log_analytics_sku,
                "retention_in_days": config.log_retention_days,
                "tags": tags,
            },
        )
        workspace_address = workspace.address
        resources.append(workspace)

    resources.append(
        ResourceSpec(
            kind=ResourceKind.KUBERNETES_CLUSTER,
            name=config.cluster_name,
            properties={
                "location": config.location,
                "resource_group_name": config.resource_group_name,
                "dns_prefix": config.dns_prefix,
                "kubernetes_version": config.kubernetes_version,
                "identity": "SystemAssigned",
                "default_node_pool": {
                    "name": config.node_pool_name,
                    "vm_size": config.vm_size,
                },
                "oms_agent_workspace": workspace_address,
                "tags": tags,
            },
        )
    )

    pool: dict[str, Any] = {
        "cluster_name": config.cluster_name,
        "resource_group_name": config.resource_group_name,
        "vm_size": config.vm_size,
        "node_count": config.node_count,
        "mode": "System",
        "enable_auto_scaling": config.enable_auto_scaling,
    }
    if config.enable_auto_scaling:
        pool["min_count"] = config.min_node_count
        pool["max_count"] = config.max_node_count
    resources.append(
        ResourceSpec(
            kind=ResourceKind.NODE_POOL,
            name=config.node_pool_name,
            properties=pool,
        )
    )
    return resources
