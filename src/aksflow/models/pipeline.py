"""Pydantic models for the pipeline configuration file.

This module defines the schema of ``pipeline.yaml``: the cluster to
provision, where its state lives, the registry to publish to, and the
release to roll out.
"""

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from aksflow.models.infrastructure import ClusterConfig

REPOSITORY_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._/-]*[a-z0-9]$|^[a-z0-9]$")
K8S_NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
QUANTITY_PATTERN = re.compile(r"^\d+(\.\d+)?(m|Mi|Gi|Ki|M|G)?$")
AZURE_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


class TagStrategy(str, Enum):
    """Strategy for generating container image tags."""

    CONTENT = "content"
    GIT_SHA = "git_sha"
    GIT_TAG = "git_tag"
    LATEST = "latest"
    CUSTOM = "custom"


class StateBackendType(str, Enum):
    """Where the remote state record is stored."""

    AZURE_BLOB = "azure_blob"
    LOCAL = "local"


class StateBackendConfig(BaseModel):
    """Remote state location and locking behavior.

    Attributes:
        backend: Storage backend type
        storage_account: Azure storage account (azure_blob)
        container: Blob container name (azure_blob)
        key: Blob or file name of the state document
        path: Directory for the local backend
        lease_duration: Lease TTL in seconds (Azure accepts 15-60)
        lock_attempts: Attempts to acquire the lease before giving up
        lock_backoff: Initial delay between lease attempts in seconds
    """

    model_config = ConfigDict(extra="forbid")

    backend: StateBackendType = Field(default=StateBackendType.AZURE_BLOB)
    storage_account: str | None = Field(default=None, description="Storage account")
    container: str = Field(default="tfstate", description="Blob container")
    key: str = Field(default="aksflow.tfstate", description="State blob name")
    path: str = Field(default=".aksflow", description="Local backend directory")
    lease_duration: int = Field(default=60, ge=15, le=60, description="Lease TTL")
    lock_attempts: int = Field(default=5, ge=1, description="Lease attempts")
    lock_backoff: float = Field(default=2.0, ge=0, description="Lease retry delay")

    @model_validator(mode="after")
    def validate_backend(self) -> "StateBackendConfig":
        """Require a storage account for the Azure blob backend."""
        if self.backend == StateBackendType.AZURE_BLOB and not self.storage_account:
            raise ValueError("storage_account is required when backend is 'azure_blob'")
        if not self.key.strip():
            raise ValueError("key must not be empty")
        return self


class RegistryConfig(BaseModel):
    """Container registry configuration.

    Attributes:
        url: Registry URL (e.g., myacr.azurecr.io, ghcr.io)
        repository: Repository name (e.g., org/app)
        tag_strategy: Strategy for generating image tags
        custom_tag: Custom tag when tag_strategy is CUSTOM
        credentials_env_prefix: Prefix for credential environment variables
    """

    model_config = ConfigDict(extra="forbid")

    url: str = Field(..., description="Registry URL (e.g., myacr.azurecr.io)")
    repository: str = Field(..., description="Repository name (e.g., org/app)")
    tag_strategy: TagStrategy = Field(
        default=TagStrategy.CONTENT, description="Strategy for generating image tags"
    )
    custom_tag: str | None = Field(
        default=None, description="Custom tag when tag_strategy is CUSTOM"
    )
    credentials_env_prefix: str | None = Field(
        default=None, description="Prefix for credential environment variables"
    )

    @field_validator("repository")
    @classmethod
    def validate_repository(cls, v: str) -> str:
        """Validate repository name pattern."""
        if not REPOSITORY_PATTERN.match(v):
            raise ValueError(
                f"Invalid repository name: {v}. "
                "Must contain only lowercase letters, numbers, '.', '_', '/', '-'"
            )
        return v

    @model_validator(mode="after")
    def validate_custom_tag(self) -> "RegistryConfig":
        """Validate that custom_tag is provided when tag_strategy is CUSTOM."""
        if self.tag_strategy == TagStrategy.CUSTOM and not self.custom_tag:
            raise ValueError("custom_tag is required when tag_strategy is 'custom'")
        return self


class ReleaseConfig(BaseModel):
    """Workload rollout configuration.

    Attributes:
        name: Deployment and Service name
        namespace: Kubernetes namespace
        replicas: Desired replica count
        container_port: Port the container listens on
        service_port: Port exposed by the Service
        cpu_request: CPU request (e.g., 100m)
        memory_request: Memory request (e.g., 128Mi)
        cpu_limit: CPU limit
        memory_limit: Memory limit
        environment: Environment variables for the container
        template: Optional path to a custom Jinja2 manifest template
        source: Application source directory (build context)
        dockerfile: Dockerfile path relative to source
        timeout_seconds: Rollout wait timeout
        poll_interval: Seconds between rollout status polls
        crash_restart_threshold: Restarts after which a pod counts as failed
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Release name")
    namespace: str = Field(default="default", description="Kubernetes namespace")
    replicas: int = Field(default=1, ge=0, le=500, description="Replica count")
    container_port: int = Field(default=5000, ge=1, le=65535)
    service_port: int = Field(default=80, ge=1, le=65535)
    service_type: str = Field(default="LoadBalancer", description="Service type")
    cpu_request: str = Field(default="100m")
    memory_request: str = Field(default="128Mi")
    cpu_limit: str = Field(default="500m")
    memory_limit: str = Field(default="512Mi")
    environment: dict[str, str] = Field(default_factory=dict)
    template: str | None = Field(default=None, description="Manifest template path")
    source: str = Field(default=".", description="Build context directory")
    dockerfile: str = Field(default="Dockerfile", description="Dockerfile path")
    platform: str = Field(default="linux/amd64", description="Image platform")
    timeout_seconds: float = Field(default=300, gt=0, description="Rollout timeout")
    poll_interval: float = Field(default=5, gt=0, description="Poll interval")
    crash_restart_threshold: int = Field(default=3, ge=1)

    @field_validator("name", "namespace")
    @classmethod
    def validate_k8s_name(cls, v: str) -> str:
        """Validate DNS-1123 label names."""
        if len(v) > 63 or not K8S_NAME_PATTERN.match(v):
            raise ValueError(
                f"Invalid name: {v!r}. Must be a DNS-1123 label "
                "(lowercase alphanumerics and '-', at most 63 characters)."
            )
        return v

    @field_validator("cpu_request", "memory_request", "cpu_limit", "memory_limit")
    @classmethod
    def validate_quantity(cls, v: str) -> str:
        """Validate Kubernetes resource quantities."""
        if not QUANTITY_PATTERN.match(v):
            raise ValueError(f"Invalid resource quantity: {v!r}")
        return v

    @model_validator(mode="after")
    def validate_poll_interval(self) -> "ReleaseConfig":
        """Poll at least once before the timeout elapses."""
        if self.poll_interval > self.timeout_seconds:
            raise ValueError(
                f"poll_interval ({self.poll_interval}) must be <= "
                f"timeout_seconds ({self.timeout_seconds})"
            )
        return self


class RetryConfig(BaseModel):
    """Exponential backoff settings for retryable platform errors."""

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=5, ge=1, le=20)
    base_delay: float = Field(default=2.0, ge=0)
    max_delay: float = Field(default=60.0, ge=0)


class PipelineConfig(BaseModel):
    """Top-level pipeline configuration.

    Attributes:
        subscription_id: Azure subscription that owns the infrastructure
        cluster: Infrastructure to provision
        state: Remote state backend
        registry: Container registry for published images
        release: Workload to roll out
        retry: Retry policy for transient errors
    """

    model_config = ConfigDict(extra="forbid")

    subscription_id: str | None = Field(
        default=None,
        description="Azure subscription ID (falls back to AZURE_SUBSCRIPTION_ID)",
    )
    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    state: StateBackendConfig = Field(..., description="Remote state backend")
    registry: RegistryConfig = Field(..., description="Container registry")
    release: ReleaseConfig = Field(..., description="Release configuration")
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("subscription_id")
    @classmethod
    def validate_subscription_id(cls, v: str | None) -> str | None:
        """Validate Azure subscription ID is a valid UUID."""
        if v is not None and not AZURE_UUID_PATTERN.match(v):
            raise ValueError(
                f"Invalid Azure subscription ID: {v}. Must be a valid UUID."
            )
        return v
