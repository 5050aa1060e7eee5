"""Tests for cluster configuration and desired resource expansion."""

import pytest
from pydantic import ValidationError

from aksflow.models.changeset import ChangeAction, ChangeSet, ResourceChange
from aksflow.models.infrastructure import (
    ClusterConfig,
    ResourceKind,
    ResourceSpec,
    desired_resources,
)


class TestClusterConfig:
    """Tests for ClusterConfig validation."""

    def test_defaults(self) -> None:
        config = ClusterConfig()

        assert config.node_count == 1
        assert config.enable_auto_scaling is False
        assert config.enable_log_analytics is False
        assert config.workspace_name == "aks-cluster-logs"

    @pytest.mark.parametrize(
        "dns_prefix", ["a", "demo", "demo-01", "D" + "x" * 52 + "1"]
    )
    def test_valid_dns_prefix(self, dns_prefix: str) -> None:
        assert ClusterConfig(dns_prefix=dns_prefix).dns_prefix == dns_prefix

    @pytest.mark.parametrize("dns_prefix", ["1demo", "demo-", "de_mo", ""])
    def test_invalid_dns_prefix(self, dns_prefix: str) -> None:
        with pytest.raises(ValidationError, match="dns_prefix"):
            ClusterConfig(dns_prefix=dns_prefix)

    @pytest.mark.parametrize("name", ["Default", "pool-1", "a" * 13])
    def test_invalid_node_pool_name(self, name: str) -> None:
        with pytest.raises(ValidationError, match="node_pool_name"):
            ClusterConfig(node_pool_name=name)

    def test_zero_nodes_allowed_only_when_autoscaling(self) -> None:
        with pytest.raises(ValidationError, match="node_count must be >= 1"):
            ClusterConfig(node_count=0)

        config = ClusterConfig(
            enable_auto_scaling=True, node_count=0, min_node_count=0, max_node_count=2
        )
        assert config.node_count == 0

    def test_bounds_ignored_without_autoscaling(self) -> None:
        """min/max only constrain node_count when the autoscaler is on."""
        config = ClusterConfig(node_count=10, min_node_count=1, max_node_count=3)

        assert config.node_count == 10

    def test_extra_fields_forbidden(self) -> None:
        with pytest.raises(ValidationError):
            ClusterConfig(node_size="big")  # type: ignore[call-arg]

    @pytest.mark.parametrize("days", [29, 731])
    def test_retention_range(self, days: int) -> None:
        with pytest.raises(ValidationError):
            ClusterConfig(log_retention_days=days)


class TestDesiredResources:
    """Tests for desired_resources."""

    def test_minimal_cluster(self, cluster_config: ClusterConfig) -> None:
        resources = desired_resources(cluster_config)

        assert [r.address for r in resources] == [
            "resource_group.demo-rg",
            "kubernetes_cluster.demo-aks",
            "node_pool.default",
        ]
        pool = resources[-1].properties
        assert pool["node_count"] == 1
        assert pool["enable_auto_scaling"] is False
        assert "min_count" not in pool
        assert resources[1].properties["oms_agent_workspace"] is None

    def test_autoscaling_pool_bounds(self) -> None:
        config = ClusterConfig(
            enable_auto_scaling=True, min_node_count=1, max_node_count=5, node_count=2
        )

        pool = desired_resources(config)[-1].properties

        assert (pool["min_count"], pool["max_count"]) == (1, 5)
        assert pool["node_count"] == 2

    def test_log_analytics_precedes_cluster(self) -> None:
        config = ClusterConfig(enable_log_analytics=True, log_retention_days=90)

        resources = desired_resources(config)

        assert [r.kind for r in resources] == list(ResourceKind)
        workspace, cluster = resources[1], resources[2]
        assert workspace.properties["retention_in_days"] == 90
        assert cluster.properties["oms_agent_workspace"] == workspace.address

    def test_tags_are_sorted(self) -> None:
        config = ClusterConfig(tags={"team": "web", "env": "prod"})

        for resource in desired_resources(config):
            if "tags" in resource.properties:
                assert list(resource.properties["tags"]) == ["env", "team"]

    def test_kind_order_is_dependency_order(self) -> None:
        assert ResourceKind.RESOURCE_GROUP.order < ResourceKind.NODE_POOL.order
        assert (
            ResourceKind.LOG_ANALYTICS_WORKSPACE.order
            < ResourceKind.KUBERNETES_CLUSTER.order
        )

    def test_resource_spec_is_frozen(self) -> None:
        spec = ResourceSpec(kind=ResourceKind.RESOURCE_GROUP, name="rg")

        with pytest.raises(ValidationError):
            spec.name = "other"  # type: ignore[misc]


class TestChangeSet:
    """Tests for ChangeSet helpers."""

    def _change(self, action: ChangeAction, kind: ResourceKind) -> ResourceChange:
        return ResourceChange(action=action, kind=kind, name="x", after={})

    def test_summary_and_counts(self) -> None:
        change_set = ChangeSet(
            changes=[
                self._change(ChangeAction.CREATE, ResourceKind.RESOURCE_GROUP),
                self._change(ChangeAction.CREATE, ResourceKind.KUBERNETES_CLUSTER),
                self._change(ChangeAction.UPDATE, ResourceKind.NODE_POOL),
                self._change(
                    ChangeAction.DELETE, ResourceKind.LOG_ANALYTICS_WORKSPACE
                ),
            ]
        )

        assert change_set.summary() == "2 to add, 1 to change, 1 to destroy"
        assert change_set.count(kind=ResourceKind.NODE_POOL) == 1
        assert len(change_set.get(ResourceKind.RESOURCE_GROUP)) == 1
        assert not change_set.is_empty

    def test_empty(self) -> None:
        assert ChangeSet().is_empty
        assert ChangeSet().summary() == "0 to add, 0 to change, 0 to destroy"

    def test_redacted_masks_secrets(self) -> None:
        change = ResourceChange(
            action=ChangeAction.UPDATE,
            kind=ResourceKind.KUBERNETES_CLUSTER,
            name="demo-aks",
            before={"kube_config": "apiVersion: v1"},
            after={"dns_prefix": "demo"},
        )

        data = ChangeSet(changes=[change]).redacted()

        assert data["changes"][0]["before"]["kube_config"] == "***REDACTED***"
        assert data["changes"][0]["after"] == {"dns_prefix": "demo"}
        assert data["changes"][0]["kind"] == "kubernetes_cluster"
