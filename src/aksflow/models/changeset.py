"""Change set models produced by the infrastructure planner."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from aksflow.lib.logging_config import redact_mapping
from aksflow.models.infrastructure import ResourceKind


class ChangeAction(str, Enum):
    """Operation the planner schedules for a resource."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ResourceChange(BaseModel):
    """A single planned operation.

    Attributes:
        action: create, update or delete
        kind: Resource kind
        name: Resource name
        before: Properties recorded in the remote state (None on create)
        after: Desired properties (None on delete)
        changed_fields: Top-level property names that differ
    """

    model_config = ConfigDict(extra="forbid")

    action: ChangeAction
    kind: ResourceKind
    name: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    changed_fields: list[str] = Field(default_factory=list)

    @property
    def address(self) -> str:
        return f"{self.kind.value}.{self.name}"


class ChangeSet(BaseModel):
    """Ordered diff between desired and applied infrastructure.

    Attributes:
        changes: Operations in execution order
        base_serial: Remote state serial the diff was computed against
        lineage: Remote state lineage the diff was computed against
        config_hash: Hash of the configuration that produced the plan
    """

    model_config = ConfigDict(extra="forbid")

    changes: list[ResourceChange] = Field(default_factory=list)
    base_serial: int = 0
    lineage: str | None = None
    config_hash: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def count(
        self, kind: ResourceKind | None = None, action: ChangeAction | None = None
    ) -> int:
        """Count changes, optionally filtered by kind and action."""
        return sum(
            1
            for change in self.changes
            if (kind is None or change.kind == kind)
            and (action is None or change.action == action)
        )

    def get(self, kind: ResourceKind) -> list[ResourceChange]:
        """Return the changes for one resource kind."""
        return [change for change in self.changes if change.kind == kind]

    def summary(self) -> str:
        """Terraform-style one-line summary."""
        return (
            f"{self.count(action=ChangeAction.CREATE)} to add, "
            f"{self.count(action=ChangeAction.UPDATE)} to change, "
            f"{self.count(action=ChangeAction.DELETE)} to destroy"
        )

    def redacted(self) -> dict[str, Any]:
        """Serializable form with sensitive values masked, for persisted output."""
        return redact_mapping(self.model_dump(mode="json"))
