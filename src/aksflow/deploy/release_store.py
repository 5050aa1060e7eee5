"""Release record persistence.

Records are one JSON document kept next to the infrastructure state: the
file ``releases.json`` in the local state directory, or the blob
``<key>.releases.json`` in the state container. Only a succeeded rollout
becomes the current record; the record it replaces moves to the front of
the history used by rollback.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from pydantic import ValidationError

from aksflow.config.defaults import RELEASES_FILENAME
from aksflow.deploy.state import BaseStateBackend
from aksflow.lib.errors import DeploymentError
from aksflow.models.release import (
    ReleaseHistory,
    ReleaseRecord,
    ReleaseState,
    RolloutStatus,
)

STATE_VERSION = "1.0"
MAX_HISTORY = 10


def release_key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


def parse_releases(content: str | None, source: str) -> ReleaseState:
    """Parse a release document; a missing or empty one has no releases."""
    if content is None or not content.strip():
        return ReleaseState(version=STATE_VERSION)

    try:
        state = ReleaseState.model_validate_json(content)
    except ValidationError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Invalid release record format in {source}: {exc}",
        ) from exc

    if not state.version:
        state = state.model_copy(update={"version": STATE_VERSION})
    return state


def serialize_releases(state: ReleaseState) -> str:
    return json.dumps(state.model_dump(mode="json"), indent=2, sort_keys=True)


class ReleaseStore:
    """Release histories keyed by namespace and name.

    Args:
        backend: State backend that also holds the release document
        document: Name of the release document next to the state
    """

    def __init__(
        self, backend: BaseStateBackend, document: str = RELEASES_FILENAME
    ) -> None:
        self.backend = backend
        self.document = document

    @property
    def location(self) -> str:
        return self.backend.document_location(self.document)

    def load(self) -> ReleaseState:
        content = self.backend.read_document(self.document)
        return parse_releases(content, self.location)

    def save(self, state: ReleaseState) -> None:
        self.backend.write_document(self.document, serialize_releases(state))

    def history(self, namespace: str, name: str) -> ReleaseHistory:
        state = self.load()
        return state.releases.get(release_key(namespace, name), ReleaseHistory())

    def current(self, namespace: str, name: str) -> ReleaseRecord | None:
        return self.history(namespace, name).current

    def previous(self, namespace: str, name: str) -> ReleaseRecord | None:
        """The most recent superseded record, the rollback target."""
        previous = self.history(namespace, name).previous
        return previous[0] if previous else None

    def record_success(self, record: ReleaseRecord) -> ReleaseRecord:
        """Make a succeeded release the current record.

        Raises:
            DeploymentError: If the record is not a succeeded rollout.
        """
        if record.status != RolloutStatus.SUCCEEDED:
            raise DeploymentError(
                operation="state",
                message=(
                    f"Only succeeded rollouts become the current release "
                    f"(got {record.status.value})"
                ),
            )
        state = self.load()
        key = release_key(record.namespace, record.name)
        history = state.releases.get(key, ReleaseHistory())
        existing = history.current
        now = datetime.now(timezone.utc)

        updated = record.model_copy(
            update={
                "revision": existing.revision + 1 if existing else 1,
                "created_at": record.created_at or now,
                "updated_at": now,
            }
        )
        previous = list(history.previous)
        if existing is not None:
            previous.insert(0, existing)
        state.releases[key] = ReleaseHistory(
            current=updated, previous=previous[:MAX_HISTORY]
        )
        self.save(state)
        return updated

    def forget(self, namespace: str, name: str) -> None:
        """Drop the history of a destroyed release."""
        state = self.load()
        if state.releases.pop(release_key(namespace, name), None) is not None:
            self.save(state)
