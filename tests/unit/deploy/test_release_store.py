"""Unit tests for release record persistence."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from aksflow.cli.common import create_release_store
from aksflow.deploy.release_store import MAX_HISTORY, ReleaseStore
from aksflow.deploy.state import AzureBlobStateBackend, LocalStateBackend
from aksflow.lib.errors import DeploymentError
from aksflow.models.pipeline import PipelineConfig, StateBackendConfig
from aksflow.models.release import ImageReference, ReleaseRecord, RolloutStatus


def _record(tag: str, status: RolloutStatus = RolloutStatus.SUCCEEDED) -> ReleaseRecord:
    return ReleaseRecord(
        name="web",
        namespace="apps",
        image=ImageReference(registry="demoacr.azurecr.io", repository="web", tag=tag),
        replicas=2,
        status=status,
    )


@pytest.fixture
def store(tmp_path: Path) -> ReleaseStore:
    return ReleaseStore(LocalStateBackend(tmp_path, "aksflow.tfstate"))


@pytest.mark.unit
class TestReleaseStore:
    """Tests for ReleaseStore on the local state backend."""

    def test_missing_document_has_no_current(self, store: ReleaseStore) -> None:
        assert store.current("apps", "web") is None
        assert store.previous("apps", "web") is None

    def test_success_increments_revision(self, store: ReleaseStore) -> None:
        first = store.record_success(_record("sha-1"))
        second = store.record_success(_record("sha-2"))

        assert (first.revision, second.revision) == (1, 2)
        previous = store.previous("apps", "web")
        assert previous is not None
        assert previous.image.tag == "sha-1"
        assert second.updated_at is not None

    @pytest.mark.parametrize(
        "status",
        [RolloutStatus.FAILED, RolloutStatus.TIMED_OUT, RolloutStatus.PENDING],
    )
    def test_only_succeeded_records_are_stored(
        self, store: ReleaseStore, status: RolloutStatus
    ) -> None:
        """Failed or timed-out rollouts never replace the current record."""
        store.record_success(_record("sha-1"))

        with pytest.raises(DeploymentError, match="Only succeeded rollouts"):
            store.record_success(_record("sha-2", status))

        current = store.current("apps", "web")
        assert current is not None
        assert current.image.tag == "sha-1"

    def test_history_is_bounded(self, store: ReleaseStore) -> None:
        for i in range(MAX_HISTORY + 3):
            store.record_success(_record(f"sha-{i}"))

        history = store.history("apps", "web")
        assert len(history.previous) == MAX_HISTORY
        assert history.previous[0].image.tag == f"sha-{MAX_HISTORY + 1}"

    def test_releases_are_keyed_by_namespace(self, store: ReleaseStore) -> None:
        store.record_success(_record("sha-1"))

        assert store.current("other", "web") is None

    def test_forget(self, store: ReleaseStore) -> None:
        store.record_success(_record("sha-1"))

        store.forget("apps", "web")

        assert store.current("apps", "web") is None
        assert store.load().releases == {}

    def test_document_sits_next_to_state(
        self, store: ReleaseStore, tmp_path: Path
    ) -> None:
        store.record_success(_record("sha-1"))

        assert (tmp_path / "releases.json").exists()
        assert store.location == str(tmp_path / "releases.json")

    def test_invalid_document_raises(
        self, store: ReleaseStore, tmp_path: Path
    ) -> None:
        (tmp_path / "releases.json").write_text('{"releases": []}', encoding="utf-8")

        with pytest.raises(DeploymentError, match="Invalid release record format"):
            store.load()


@pytest.mark.unit
class TestBlobReleaseStore:
    """Release records kept in the state container for the blob backend."""

    def _store(self) -> tuple[ReleaseStore, MagicMock]:
        container = MagicMock()
        backend = AzureBlobStateBackend(
            storage_account="tfstate01",
            container="tfstate",
            key="prod.tfstate",
            container_client=container,
        )
        return ReleaseStore(backend), container

    def test_records_are_written_to_sibling_blob(
        self, azure_sdk: SimpleNamespace
    ) -> None:
        store, container = self._store()
        sibling = MagicMock()
        sibling.download_blob.side_effect = azure_sdk.exceptions.ResourceNotFoundError(
            "BlobNotFound", status_code=404
        )
        container.get_blob_client.side_effect = lambda name: (
            sibling if name == "prod.tfstate.releases.json" else MagicMock()
        )

        store.record_success(_record("sha-1"))

        content = sibling.upload_blob.call_args.args[0]
        assert '"sha-1"' in content
        assert sibling.upload_blob.call_args.kwargs == {"overwrite": True}
        assert store.location == "tfstate/prod.tfstate.releases.json"

    def test_records_are_read_from_sibling_blob(
        self, azure_sdk: SimpleNamespace, tmp_path: Path
    ) -> None:
        local = ReleaseStore(LocalStateBackend(tmp_path, "prod.tfstate"))
        local.record_success(_record("sha-7"))
        store, container = self._store()
        blob = container.get_blob_client.return_value
        blob.download_blob.return_value.readall.return_value = (
            tmp_path / "releases.json"
        ).read_bytes()

        current = store.current("apps", "web")

        assert current is not None
        assert current.image.tag == "sha-7"
        container.get_blob_client.assert_called_with("prod.tfstate.releases.json")

    def test_create_release_store_follows_state_backend(
        self, azure_sdk: SimpleNamespace, pipeline_config: PipelineConfig
    ) -> None:
        config = pipeline_config.model_copy(
            update={
                "state": StateBackendConfig(
                    backend="azure_blob", storage_account="tfstate01"
                )
            }
        )

        store = create_release_store(config)

        assert isinstance(store.backend, AzureBlobStateBackend)
        assert store.location == "tfstate/aksflow.tfstate.releases.json"

    def test_create_release_store_local(
        self, pipeline_config: PipelineConfig, tmp_path: Path
    ) -> None:
        config = pipeline_config.model_copy(
            update={
                "state": StateBackendConfig(backend="local", path=str(tmp_path / "s"))
            }
        )

        store = create_release_store(config)

        assert store.location == str(tmp_path / "s" / "releases.json")
