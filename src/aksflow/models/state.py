"""Remote state document models."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr

STATE_VERSION = "1.0"


class ClusterCredentials(BaseModel):
    """Client credentials for the AKS API server.

    Every field except ``host`` is secret and is masked in ``repr``,
    ``str`` and default dumps.
    """

    model_config = ConfigDict(extra="forbid")

    host: str = Field(..., description="API server URL")
    cluster_ca_certificate: SecretStr = Field(
        ..., description="Base64 PEM of the cluster CA"
    )
    client_certificate: SecretStr = Field(
        ..., description="Base64 PEM client certificate"
    )
    client_key: SecretStr = Field(..., description="Base64 PEM client key")

    def reveal(self) -> dict[str, str]:
        """Return the plain values, for persisting state and configuring clients."""
        return {
            "host": self.host,
            "cluster_ca_certificate": self.cluster_ca_certificate.get_secret_value(),
            "client_certificate": self.client_certificate.get_secret_value(),
            "client_key": self.client_key.get_secret_value(),
        }


class ClusterOutputs(BaseModel):
    """Outputs available to downstream stages after a successful apply."""

    model_config = ConfigDict(extra="forbid")

    cluster_name: str
    resource_group_name: str
    node_resource_group: str
    credentials: ClusterCredentials

    @property
    def endpoint(self) -> str:
        return self.credentials.host

    def to_document(self) -> dict[str, Any]:
        """Dump with secrets revealed, for the remote state document only."""
        data = self.model_dump(mode="json", exclude={"credentials"})
        data["credentials"] = self.credentials.reveal()
        return data


class InfrastructureState(BaseModel):
    """The remote state record.

    Attributes:
        version: Document format version
        serial: Incremented on every committed apply
        lineage: Identifier stable for the lifetime of this state
        resources: Applied attributes keyed by resource address
        outputs: Cluster outputs of the last committed apply
        updated_at: Commit timestamp
    """

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default=STATE_VERSION)
    serial: int = Field(default=0, ge=0)
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, dict[str, Any]] = Field(default_factory=dict)
    outputs: ClusterOutputs | None = None
    updated_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not self.resources

    def to_document(self) -> dict[str, Any]:
        """Serialize for storage, revealing credentials."""
        data = self.model_dump(mode="json", exclude={"outputs"})
        data["outputs"] = self.outputs.to_document() if self.outputs else None
        return data
