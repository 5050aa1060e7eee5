"""Azure provisioner: resource groups, Log Analytics and AKS via the mgmt SDKs."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import yaml

from aksflow.deploy.azure_errors import translate_azure_error
from aksflow.deploy.provisioners.base import BaseProvisioner
from aksflow.lib.errors import CloudSDKNotInstalledError, DeploymentError
from aksflow.lib.logging_config import get_logger
from aksflow.models.infrastructure import ResourceKind, ResourceSpec
from aksflow.models.state import ClusterCredentials, ClusterOutputs

if TYPE_CHECKING:
    from azure.mgmt.containerservice import ContainerServiceClient
    from azure.mgmt.loganalytics import LogAnalyticsManagementClient
    from azure.mgmt.resource import ResourceManagementClient

logger = get_logger(__name__)


def parse_kubeconfig(content: str | bytes) -> ClusterCredentials:
    """Extract API server and client credentials from a kubeconfig document.

    Raises:
        DeploymentError: If the kubeconfig lacks a cluster or user entry.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8")
    try:
        data = yaml.safe_load(content) or {}
        cluster = data["clusters"][0]["cluster"]
        user = data["users"][0]["user"]
        return ClusterCredentials(
            host=cluster["server"],
            cluster_ca_certificate=cluster["certificate-authority-data"],
            client_certificate=user["client-certificate-data"],
            client_key=user["client-key-data"],
        )
    except (yaml.YAMLError, KeyError, IndexError, TypeError) as exc:
        # Do not echo the document: it carries the client key
        raise DeploymentError(
            operation="credentials",
            message="Cluster kubeconfig is missing required entries "
            f"({type(exc).__name__})",
        ) from exc


class AzureProvisioner(BaseProvisioner):
    """Provision AKS infrastructure with the Azure management SDKs."""

    def __init__(self, subscription_id: str, credential: Any | None = None) -> None:
        """Initialize the Azure management clients.

        Args:
            subscription_id: Azure subscription ID
            credential: Optional credential (DefaultAzureCredential when omitted)

        Raises:
            CloudSDKNotInstalledError: If Azure SDK dependencies are missing
        """
        try:
            from azure.core.exceptions import ResourceNotFoundError
            from azure.identity import DefaultAzureCredential
            from azure.mgmt.containerservice import ContainerServiceClient
            from azure.mgmt.loganalytics import LogAnalyticsManagementClient
            from azure.mgmt.resource import ResourceManagementClient
        except ImportError as exc:
            raise CloudSDKNotInstalledError(
                provider="azure", sdk_name="azure-mgmt-containerservice"
            ) from exc

        credential = credential or DefaultAzureCredential()
        self._subscription_id = subscription_id
        self._ResourceNotFoundError = ResourceNotFoundError
        self._resources: ResourceManagementClient = ResourceManagementClient(
            credential, subscription_id
        )
        self._aks: ContainerServiceClient = ContainerServiceClient(
            credential, subscription_id
        )
        self._logs: LogAnalyticsManagementClient = LogAnalyticsManagementClient(
            credential, subscription_id
        )

    def create_or_update(
        self,
        spec: ResourceSpec,
        applied: Mapping[str, Mapping[str, Any]],
    ) -> dict[str, Any]:
        """Create or update a resource of any managed kind."""
        logger.debug(f"Azure create_or_update {spec.address}")
        try:
            if spec.kind == ResourceKind.RESOURCE_GROUP:
                return self._apply_resource_group(spec)
            if spec.kind == ResourceKind.LOG_ANALYTICS_WORKSPACE:
                return self._apply_workspace(spec)
            if spec.kind == ResourceKind.KUBERNETES_CLUSTER:
                return self._apply_cluster(spec, applied)
            if spec.kind == ResourceKind.NODE_POOL:
                return self._apply_node_pool(spec)
        except DeploymentError:
            raise
        except Exception as exc:
            raise translate_azure_error(exc, "apply") from exc
        raise DeploymentError(
            operation="apply", message=f"Unsupported resource kind: {spec.kind}"
        )

    def _apply_resource_group(self, spec: ResourceSpec) -> dict[str, Any]:
        props = spec.properties
        group = self._resources.resource_groups.create_or_update(
            spec.name, {"location": props["location"], "tags": props["tags"]}
        )
        return {"id": group.id}

    def _apply_workspace(self, spec: ResourceSpec) -> dict[str, Any]:
        props = spec.properties
        workspace = self._logs.workspaces.begin_create_or_update(
            props["resource_group_name"],
            spec.name,
            {
                "location": props["location"],
                "sku": {"name": props["sku"]},
                "retention_in_days": props["retention_in_days"],
                "tags": props["tags"],
            },
        ).result()
        return {"id": workspace.id, "customer_id": workspace.customer_id}

    def _existing_pool_profile(self, rg: str, name: str) -> dict[str, Any] | None:
        """Current agent pool settings, so cluster updates do not reset them."""
        try:
            cluster = self._aks.managed_clusters.get(rg, name)
        except self._ResourceNotFoundError:
            return None
        profiles = cluster.agent_pool_profiles or []
        if not profiles:
            return None
        pool = profiles[0]
        return {
            "count": pool.count,
            "enable_auto_scaling": pool.enable_auto_scaling,
            "min_count": pool.min_count,
            "max_count": pool.max_count,
        }

    def _apply_cluster(
        self, spec: ResourceSpec, applied: Mapping[str, Mapping[str, Any]]
    ) -> dict[str, Any]:
        props = spec.properties
        rg = props["resource_group_name"]
        default_pool = props["default_node_pool"]

        pool_profile: dict[str, Any] = {
            "name": default_pool["name"],
            "vm_size": default_pool["vm_size"],
            "count": 1,
            "mode": "System",
            "type": "VirtualMachineScaleSets",
            "os_type": "Linux",
        }
        existing = self._existing_pool_profile(rg, spec.name)
        if existing:
            pool_profile.update({k: v for k, v in existing.items() if v is not None})

        body: dict[str, Any] = {
            "location": props["location"],
            "dns_prefix": props["dns_prefix"],
            "identity": {"type": props["identity"]},
            "agent_pool_profiles": [pool_profile],
            "tags": props["tags"],
        }
        if props.get("kubernetes_version"):
            body["kubernetes_version"] = props["kubernetes_version"]

        workspace_address = props.get("oms_agent_workspace")
        if workspace_address:
            workspace = applied.get(workspace_address)
            if not workspace or not workspace.get("id"):
                raise DeploymentError(
                    operation="apply",
                    message=f"{spec.address} references {workspace_address}, "
                    "which has not been applied",
                )
            body["addon_profiles"] = {
                "omsagent": {
                    "enabled": True,
                    "config": {"logAnalyticsWorkspaceResourceID": workspace["id"]},
                }
            }
        else:
            body["addon_profiles"] = {"omsagent": {"enabled": False}}

        cluster = self._aks.managed_clusters.begin_create_or_update(
            rg, spec.name, body
        ).result()
        return {
            "id": cluster.id,
            "fqdn": cluster.fqdn,
            "node_resource_group": cluster.node_resource_group,
        }

    def _apply_node_pool(self, spec: ResourceSpec) -> dict[str, Any]:
        props = spec.properties
        body: dict[str, Any] = {
            "count": props["node_count"],
            "vm_size": props["vm_size"],
            "mode": props["mode"],
            "type": "VirtualMachineScaleSets",
            "os_type": "Linux",
            "enable_auto_scaling": props["enable_auto_scaling"],
        }
        if props["enable_auto_scaling"]:
            body["min_count"] = props["min_count"]
            body["max_count"] = props["max_count"]
        pool = self._aks.agent_pools.begin_create_or_update(
            props["resource_group_name"], props["cluster_name"], spec.name, body
        ).result()
        return {"id": pool.id}

    def delete(self, spec: ResourceSpec) -> None:
        """Delete a resource; a resource that is already gone is skipped."""
        props = spec.properties
        logger.debug(f"Azure delete {spec.address}")
        try:
            if spec.kind == ResourceKind.RESOURCE_GROUP:
                self._resources.resource_groups.begin_delete(spec.name).result()
            elif spec.kind == ResourceKind.LOG_ANALYTICS_WORKSPACE:
                self._logs.workspaces.begin_delete(
                    props["resource_group_name"], spec.name
                ).result()
            elif spec.kind == ResourceKind.KUBERNETES_CLUSTER:
                self._aks.managed_clusters.begin_delete(
                    props["resource_group_name"], spec.name
                ).result()
            elif spec.kind == ResourceKind.NODE_POOL:
                self._aks.agent_pools.begin_delete(
                    props["resource_group_name"], props["cluster_name"], spec.name
                ).result()
        except self._ResourceNotFoundError:
            logger.info(f"{spec.address} already deleted")
        except Exception as exc:
            raise translate_azure_error(exc, "destroy") from exc

    def get_cluster_outputs(self, cluster: ResourceSpec) -> ClusterOutputs:
        """Read the admin kubeconfig and node resource group of a cluster."""
        rg = cluster.properties["resource_group_name"]
        try:
            managed = self._aks.managed_clusters.get(rg, cluster.name)
            result = self._aks.managed_clusters.list_cluster_admin_credentials(
                rg, cluster.name
            )
        except Exception as exc:
            raise translate_azure_error(exc, "credentials") from exc

        if not result.kubeconfigs:
            raise DeploymentError(
                operation="credentials",
                message=f"No kubeconfig returned for cluster {cluster.name}",
            )
        return ClusterOutputs(
            cluster_name=cluster.name,
            resource_group_name=rg,
            node_resource_group=managed.node_resource_group,
            credentials=parse_kubeconfig(result.kubeconfigs[0].value),
        )
