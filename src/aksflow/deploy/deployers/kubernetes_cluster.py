"""Kubernetes deployer using the official Python client."""

from __future__ import annotations

import base64
import os
import tempfile
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from aksflow.config.defaults import TRANSIENT_STATUS_CODES
from aksflow.deploy.deployers.base import BaseDeployer
from aksflow.lib.errors import (
    AuthorizationError,
    CloudSDKNotInstalledError,
    DeploymentError,
    PlatformTransientError,
)
from aksflow.lib.logging_config import get_logger
from aksflow.models.release import PodState, RolloutSnapshot
from aksflow.models.state import ClusterCredentials

if TYPE_CHECKING:
    from kubernetes.client import ApiClient, AppsV1Api, CoreV1Api, NetworkingV1Api

    from aksflow.deploy.manifest import Manifest

logger = get_logger(__name__)

REVISION_ANNOTATION = "deployment.kubernetes.io/revision"
LOG_TAIL_LINES = 100


class KubernetesDeployer(BaseDeployer):
    """Roll out manifests to an AKS cluster through the Kubernetes API."""

    def __init__(self, credentials: ClusterCredentials) -> None:
        """Configure an API client from cluster credentials.

        Certificates are written to private temporary files, removed by
        ``close``.

        Raises:
            CloudSDKNotInstalledError: If the kubernetes client is missing
        """
        try:
            from kubernetes import client as k8s_client
            from kubernetes.client.rest import ApiException
            from urllib3.exceptions import HTTPError as Urllib3HTTPError
        except ImportError as exc:
            raise CloudSDKNotInstalledError(
                provider="kubernetes", sdk_name="kubernetes"
            ) from exc

        self._ApiException = ApiException
        self._Urllib3HTTPError = Urllib3HTTPError
        self._files: list[str] = []

        secrets = credentials.reveal()
        configuration = k8s_client.Configuration()
        configuration.host = secrets["host"]
        configuration.verify_ssl = True
        configuration.ssl_ca_cert = self._write_pem(secrets["cluster_ca_certificate"])
        configuration.cert_file = self._write_pem(secrets["client_certificate"])
        configuration.key_file = self._write_pem(secrets["client_key"])

        self._api_client: ApiClient = k8s_client.ApiClient(configuration)
        self._apps: AppsV1Api = k8s_client.AppsV1Api(self._api_client)
        self._core: CoreV1Api = k8s_client.CoreV1Api(self._api_client)
        self._networking: NetworkingV1Api = k8s_client.NetworkingV1Api(
            self._api_client
        )

    def _write_pem(self, data: str) -> str:
        """Decode base64 PEM data (kubeconfig ``*-data`` form) to a 0600 file."""
        try:
            content = base64.b64decode(data, validate=True)
        except ValueError:
            content = data.encode("utf-8")
        fd, path = tempfile.mkstemp(prefix="aksflow-", suffix=".pem")
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
        self._files.append(path)
        return path

    def close(self) -> None:
        self._api_client.close()
        for path in self._files:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
        self._files.clear()

    def __enter__(self) -> KubernetesDeployer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _translate(self, exc: Exception, operation: str) -> DeploymentError:
        if isinstance(exc, self._ApiException):
            status = exc.status
            reason = f"{status} {exc.reason}".strip()
            if status in (401, 403):
                return AuthorizationError(
                    operation=operation,
                    message=f"Kubernetes API rejected the request: {reason}",
                )
            if status in TRANSIENT_STATUS_CODES:
                return PlatformTransientError(
                    operation=operation, message=f"Kubernetes API error: {reason}"
                )
            message = f"Kubernetes API error: {reason}"
            if exc.body:
                message = f"{message}: {exc.body}"
            return DeploymentError(operation=operation, message=message)
        if isinstance(exc, self._Urllib3HTTPError):
            return PlatformTransientError(
                operation=operation, message=f"Kubernetes API unreachable: {exc}"
            )
        return DeploymentError(operation=operation, message=str(exc))

    def _handlers(
        self, kind: str
    ) -> tuple[Callable[..., Any], Callable[..., Any], Callable[..., Any]] | None:
        """(create, read, replace) calls for a supported object kind."""
        apis: dict[str, tuple[Any, str]] = {
            "Deployment": (self._apps, "deployment"),
            "Service": (self._core, "service"),
            "ConfigMap": (self._core, "config_map"),
            "Secret": (self._core, "secret"),
            "ServiceAccount": (self._core, "service_account"),
            "Ingress": (self._networking, "ingress"),
        }
        if kind not in apis:
            return None
        api, suffix = apis[kind]
        return (
            getattr(api, f"create_namespaced_{suffix}"),
            getattr(api, f"read_namespaced_{suffix}"),
            getattr(api, f"replace_namespaced_{suffix}"),
        )

    def _ensure_namespace(self, namespace: str) -> None:
        try:
            self._core.create_namespace(body={"metadata": {"name": namespace}})
            logger.info(f"Created namespace {namespace}")
        except self._ApiException as exc:
            if exc.status not in (403, 409):
                raise
            # 403: the credentials may deploy into but not create namespaces

    def apply_manifest(self, manifest: Manifest, namespace: str) -> None:
        try:
            self._ensure_namespace(namespace)
            for document in manifest.documents:
                kind = document["kind"]
                name = document.get("metadata", {}).get("name", "")
                handlers = self._handlers(kind)
                if handlers is None:
                    raise DeploymentError(
                        operation="apply",
                        message=f"Unsupported manifest object kind: {kind}",
                    )
                create, read, replace = handlers
                body = dict(document)
                metadata = document.get("metadata", {})
                body["metadata"] = {**metadata, "namespace": namespace}
                try:
                    create(namespace=namespace, body=body)
                    logger.info(f"Created {kind}/{name} in {namespace}")
                except self._ApiException as exc:
                    if exc.status != 409:
                        raise
                    # Full replace: fields dropped from the manifest are removed
                    live = read(name=name, namespace=namespace)
                    body["metadata"]["resourceVersion"] = (
                        live.metadata.resource_version
                    )
                    replace(name=name, namespace=namespace, body=body)
                    logger.info(f"Replaced {kind}/{name} in {namespace}")
        except DeploymentError:
            raise
        except Exception as exc:
            raise self._translate(exc, "apply") from exc

    def _current_pod_hash(self, deployment: Any, selector: str) -> str | None:
        """pod-template-hash of the ReplicaSet for the newest revision."""
        revision = (deployment.metadata.annotations or {}).get(REVISION_ANNOTATION)
        if revision is None:
            return None
        replica_sets = self._apps.list_namespaced_replica_set(
            deployment.metadata.namespace, label_selector=selector
        )
        for replica_set in replica_sets.items:
            annotations = replica_set.metadata.annotations or {}
            if annotations.get(REVISION_ANNOTATION) == revision:
                return (replica_set.metadata.labels or {}).get("pod-template-hash")
        return None

    @staticmethod
    def _pod_state(pod: Any) -> PodState:
        statuses = pod.status.container_statuses or []
        waiting_reason = None
        for status in statuses:
            waiting = status.state.waiting if status.state else None
            if waiting is not None and waiting.reason:
                waiting_reason = waiting.reason
                break
        return PodState(
            name=pod.metadata.name,
            phase=pod.status.phase or "Pending",
            waiting_reason=waiting_reason,
            restart_count=max((s.restart_count or 0 for s in statuses), default=0),
            ready=bool(statuses) and all(s.ready for s in statuses),
        )

    @staticmethod
    def _selector(deployment: Any) -> str:
        labels = deployment.spec.selector.match_labels or {}
        return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))

    def get_rollout_snapshot(self, namespace: str, name: str) -> RolloutSnapshot:
        try:
            deployment = self._apps.read_namespaced_deployment(name, namespace)
            selector = self._selector(deployment)
            pod_hash = self._current_pod_hash(deployment, selector)
            pod_selector = selector
            if pod_hash:
                pod_selector = f"{selector},pod-template-hash={pod_hash}"
            pods = self._core.list_namespaced_pod(
                namespace, label_selector=pod_selector
            )
        except Exception as exc:
            raise self._translate(exc, "rollout") from exc

        status = deployment.status
        return RolloutSnapshot(
            desired_replicas=deployment.spec.replicas or 0,
            updated_replicas=status.updated_replicas or 0,
            ready_replicas=status.ready_replicas or 0,
            available_replicas=status.available_replicas or 0,
            observed_generation=status.observed_generation,
            generation=deployment.metadata.generation,
            pods=[self._pod_state(pod) for pod in pods.items],
        )

    def destroy(self, namespace: str, name: str) -> None:
        deletes = (
            self._apps.delete_namespaced_deployment,
            self._core.delete_namespaced_service,
        )
        for delete in deletes:
            try:
                delete(name, namespace)
            except self._ApiException as exc:
                if exc.status == 404:
                    continue
                raise self._translate(exc, "destroy") from exc
            except Exception as exc:
                raise self._translate(exc, "destroy") from exc
        logger.info(f"Deleted release {namespace}/{name}")

    def stream_logs(self, namespace: str, name: str) -> Iterable[str]:
        try:
            deployment = self._apps.read_namespaced_deployment(name, namespace)
            pods = self._core.list_namespaced_pod(
                namespace, label_selector=self._selector(deployment)
            )
            for pod in pods.items:
                text = self._core.read_namespaced_pod_log(
                    pod.metadata.name, namespace, tail_lines=LOG_TAIL_LINES
                )
                for line in (text or "").splitlines():
                    yield f"[{pod.metadata.name}] {line}"
        except Exception as exc:
            raise self._translate(exc, "logs") from exc
