"""Models for published images, rollouts and release records."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ImageReference(BaseModel):
    """Immutable (registry, repository, tag) triple, with digest once pushed."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    registry: str = Field(..., description="Registry host (e.g., myacr.azurecr.io)")
    repository: str = Field(..., description="Repository path")
    tag: str = Field(..., description="Image tag")
    digest: str | None = Field(default=None, description="sha256 content digest")

    @property
    def name(self) -> str:
        """Repository name including the registry host."""
        if not self.registry:
            return self.repository
        return f"{self.registry}/{self.repository}"

    @property
    def uri(self) -> str:
        return f"{self.name}:{self.tag}"

    @property
    def pinned_uri(self) -> str:
        """Digest-pinned reference when the digest is known, else ``uri``."""
        if self.digest:
            return f"{self.name}@{self.digest}"
        return self.uri

    def __str__(self) -> str:
        return self.uri


class RolloutStatus(str, Enum):
    """Rollout state machine: pending -> progressing -> terminal."""

    PENDING = "pending"
    PROGRESSING = "progressing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (
            RolloutStatus.SUCCEEDED,
            RolloutStatus.FAILED,
            RolloutStatus.TIMED_OUT,
        )


class PodState(BaseModel):
    """Container state of one pod, as reported by the cluster."""

    model_config = ConfigDict(extra="forbid")

    name: str
    phase: str = "Pending"
    waiting_reason: str | None = None
    restart_count: int = 0
    ready: bool = False


class RolloutSnapshot(BaseModel):
    """One polling observation of a Deployment rollout."""

    model_config = ConfigDict(extra="forbid")

    desired_replicas: int = 0
    updated_replicas: int = 0
    ready_replicas: int = 0
    available_replicas: int = 0
    observed_generation: int | None = None
    generation: int | None = None
    pods: list[PodState] = Field(default_factory=list)

    @property
    def observed(self) -> bool:
        """True once the controller has seen the latest spec."""
        if self.generation is None or self.observed_generation is None:
            return True
        return self.observed_generation >= self.generation


class RolloutResult(BaseModel):
    """Outcome of applying a manifest and waiting for the rollout."""

    model_config = ConfigDict(extra="forbid")

    release: str
    namespace: str
    status: RolloutStatus
    message: str = ""
    elapsed: float = 0.0
    snapshot: RolloutSnapshot | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == RolloutStatus.SUCCEEDED


class ReleaseRecord(BaseModel):
    """The active (image, replicas, status) of a running workload."""

    model_config = ConfigDict(extra="forbid")

    name: str
    namespace: str
    image: ImageReference
    replicas: int = Field(..., ge=0)
    status: RolloutStatus
    revision: int = Field(default=1, ge=1)
    values_hash: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ReleaseHistory(BaseModel):
    """Current release plus superseded records, most recent first."""

    model_config = ConfigDict(extra="forbid")

    current: ReleaseRecord | None = None
    previous: list[ReleaseRecord] = Field(default_factory=list)


class ReleaseState(BaseModel):
    """Top-level release store document."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1.0")
    releases: dict[str, ReleaseHistory] = Field(
        default_factory=dict, description="Histories keyed by namespace/name"
    )
