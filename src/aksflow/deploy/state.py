"""Remote state storage with exclusive leases.

The infrastructure state is one document per environment. Every write
happens under a time-bounded, renewable lease so that concurrent pipeline
runs never interleave their read-modify-write cycles.
"""

from __future__ import annotations

import hashlib
import json
import os
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from aksflow.deploy.azure_errors import translate_azure_error
from aksflow.lib.errors import (
    CloudSDKNotInstalledError,
    DeploymentError,
    StateLockUnavailableError,
)
from aksflow.lib.logging_config import get_logger
from aksflow.lib.retry import RetryPolicy
from aksflow.models.pipeline import StateBackendConfig, StateBackendType
from aksflow.models.state import STATE_VERSION, InfrastructureState

if TYPE_CHECKING:
    from azure.storage.blob import BlobClient, BlobLeaseClient, ContainerClient

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_config_hash(config: BaseModel) -> str:
    """Compute a deterministic hash for a configuration model."""
    payload = json.dumps(
        config.model_dump(mode="json", exclude_unset=False),
        sort_keys=True,
    )
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


@dataclass
class Lease:
    """An exclusive, time-bounded claim on a state key.

    Attributes:
        key: State key the lease protects
        lease_id: Opaque identifier proving ownership
        duration: TTL in seconds
        expires_at: When the lease lapses unless renewed
    """

    key: str
    lease_id: str
    duration: int
    expires_at: datetime
    clock: Callable[[], datetime] = field(default=_utcnow, repr=False)

    @property
    def expired(self) -> bool:
        return self.clock() >= self.expires_at

    def extend(self) -> None:
        """Push the expiry forward by one TTL from now."""
        self.expires_at = self.clock() + timedelta(seconds=self.duration)


class BaseStateBackend(ABC):
    """Abstract storage for the remote state record."""

    key: str

    @abstractmethod
    def read(self) -> tuple[InfrastructureState, str | None]:
        """Return the last committed state and its etag.

        A missing document yields a fresh, empty state and a None etag.

        Raises:
            DeploymentError: If the stored document cannot be read or parsed.
        """

    @abstractmethod
    def acquire_lease(self, duration: int) -> Lease:
        """Acquire the exclusive lease on the state key.

        Raises:
            StateLockUnavailableError: If another run holds the lease.
        """

    @abstractmethod
    def renew_lease(self, lease: Lease) -> Lease:
        """Renew a held lease for another TTL."""

    @abstractmethod
    def release_lease(self, lease: Lease) -> None:
        """Release a held lease."""

    @abstractmethod
    def write(self, state: InfrastructureState, lease: Lease) -> str:
        """Atomically replace the state document under a held lease.

        Returns:
            The new etag.

        Raises:
            StateLockUnavailableError: If the lease is not held (expired or lost).
        """

    @abstractmethod
    def read_document(self, name: str) -> str | None:
        """Read a document stored next to the state record, None if missing."""

    @abstractmethod
    def write_document(self, name: str, content: str) -> None:
        """Replace a document stored next to the state record."""

    @abstractmethod
    def document_location(self, name: str) -> str:
        """Human-readable location of a sibling document."""


def _parse_state(content: str | bytes, source: str) -> InfrastructureState:
    if not content or not content.strip():
        return InfrastructureState()
    try:
        state = InfrastructureState.model_validate_json(content)
    except PydanticValidationError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Invalid state document format in {source}: {exc}",
        ) from exc
    if not state.version:
        state = state.model_copy(update={"version": STATE_VERSION})
    return state


def _serialize_state(state: InfrastructureState) -> str:
    return json.dumps(state.to_document(), indent=2, sort_keys=True)


def _etag(content: str | bytes) -> str:
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def _lock_identity(lock: dict[str, Any]) -> tuple[Any, Any]:
    return lock.get("lease_id"), lock.get("expires_at")


class LocalStateBackend(BaseStateBackend):
    """State document on the local filesystem, locked by a sibling lock file.

    The lock file is created with ``O_CREAT | O_EXCL`` so only one process
    can hold it. It records the lease id and expiry; a lock whose expiry
    has passed may be broken by the next caller.
    """

    def __init__(
        self,
        directory: str | Path,
        key: str,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.directory = Path(directory)
        self.key = key
        self._clock = clock

    @property
    def state_path(self) -> Path:
        return self.directory / self.key

    @property
    def lock_path(self) -> Path:
        return self.directory / f"{self.key}.lock"

    def read(self) -> tuple[InfrastructureState, str | None]:
        if not self.state_path.exists():
            return InfrastructureState(), None
        try:
            content = self.state_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise DeploymentError(
                operation="state",
                message=f"Failed to read state at {self.state_path}: {exc}",
            ) from exc
        return _parse_state(content, str(self.state_path)), _etag(content)

    def _read_lock(self) -> dict[str, Any] | None:
        return self._read_lock_file(self.lock_path)

    @staticmethod
    def _read_lock_file(path: Path) -> dict[str, Any] | None:
        try:
            content = path.read_text(encoding="utf-8")
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return None
        try:
            return json.loads(content)
        except ValueError:
            # Half-written lock file: held until one maximum TTL after its mtime
            written = datetime.fromtimestamp(mtime, tz=timezone.utc)
            expires_at = written + timedelta(seconds=60)
            return {"lease_id": None, "expires_at": expires_at.isoformat()}

    def _lock_expired(self, lock: dict[str, Any]) -> bool:
        expires_at = datetime.fromisoformat(lock["expires_at"])
        return self._clock() >= expires_at

    def _break_expired_lock(self, expired: dict[str, Any]) -> None:
        """Remove the lock file if it is still the expired lock that was read.

        The file is moved aside first and compared with ``expired``. If
        another caller broke the lock and took a fresh one in between, the
        moved file is that caller's live lock: it is put back untouched.

        Raises:
            StateLockUnavailableError: If the lock changed hands since it was read.
        """
        tombstone = self.lock_path.with_name(
            f"{self.lock_path.name}.{uuid.uuid4().hex}.broken"
        )
        try:
            os.rename(self.lock_path, tombstone)
        except FileNotFoundError:
            return
        moved = self._read_lock_file(tombstone)
        if moved is None or _lock_identity(moved) != _lock_identity(expired):
            os.rename(tombstone, self.lock_path)
            raise StateLockUnavailableError(
                self.key,
                f"State '{self.key}' was locked by another run while breaking "
                f"its expired lock",
            )
        tombstone.unlink(missing_ok=True)
        logger.warning(f"Broke expired lock on state '{self.key}'")

    def acquire_lease(self, duration: int) -> Lease:
        self.directory.mkdir(parents=True, exist_ok=True)
        lease = Lease(
            key=self.key,
            lease_id=str(uuid.uuid4()),
            duration=duration,
            expires_at=self._clock() + timedelta(seconds=duration),
            clock=self._clock,
        )
        for _ in range(2):
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                lock = self._read_lock()
                if lock is None:
                    continue
                if not self._lock_expired(lock):
                    raise StateLockUnavailableError(
                        self.key,
                        f"State '{self.key}' is locked until {lock['expires_at']} "
                        f"(lease {lock.get('lease_id')})",
                    ) from None
                self._break_expired_lock(lock)
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._lock_payload(lease), f)
            logger.debug(f"Acquired lease {lease.lease_id} on state '{self.key}'")
            return lease
        raise StateLockUnavailableError(self.key)

    @staticmethod
    def _lock_payload(lease: Lease) -> dict[str, str]:
        return {
            "lease_id": lease.lease_id,
            "expires_at": lease.expires_at.isoformat(),
        }

    def _check_held(self, lease: Lease) -> None:
        lock = self._read_lock()
        if lock is None or lock.get("lease_id") != lease.lease_id:
            raise StateLockUnavailableError(
                self.key, f"Lease {lease.lease_id} on state '{self.key}' was lost"
            )
        if self._lock_expired(lock):
            raise StateLockUnavailableError(
                self.key, f"Lease {lease.lease_id} on state '{self.key}' has expired"
            )

    def _atomic_write(self, path: Path, content: str) -> None:
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            tmp_path.write_text(content, encoding="utf-8")
            os.replace(tmp_path, path)
        finally:
            tmp_path.unlink(missing_ok=True)

    def renew_lease(self, lease: Lease) -> Lease:
        self._check_held(lease)
        lease.extend()
        self._atomic_write(self.lock_path, json.dumps(self._lock_payload(lease)))
        return lease

    def release_lease(self, lease: Lease) -> None:
        lock = self._read_lock()
        if lock is None or lock.get("lease_id") != lease.lease_id:
            logger.warning(
                f"Lease {lease.lease_id} on state '{self.key}' was not held at release"
            )
            return
        self.lock_path.unlink(missing_ok=True)
        logger.debug(f"Released lease {lease.lease_id} on state '{self.key}'")

    def write(self, state: InfrastructureState, lease: Lease) -> str:
        self._check_held(lease)
        content = _serialize_state(state)
        try:
            self._atomic_write(self.state_path, content)
        except OSError as exc:
            raise DeploymentError(
                operation="state",
                message=f"Failed to write state to {self.state_path}: {exc}",
            ) from exc
        return _etag(content)

    def document_location(self, name: str) -> str:
        return str(self.directory / name)

    def read_document(self, name: str) -> str | None:
        path = self.directory / name
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise DeploymentError(
                operation="state", message=f"Failed to read {path}: {exc}"
            ) from exc

    def write_document(self, name: str, content: str) -> None:
        path = self.directory / name
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._atomic_write(path, content)
        except OSError as exc:
            raise DeploymentError(
                operation="state", message=f"Failed to write {path}: {exc}"
            ) from exc


class AzureBlobStateBackend(BaseStateBackend):
    """State document stored as an Azure blob, locked with a blob lease.

    One blob per environment, keyed by (storage account, container, blob
    name). Writes carry the lease id, so the storage service itself rejects
    a writer that does not hold the lease.
    """

    def __init__(
        self,
        storage_account: str,
        container: str,
        key: str,
        credential: Any | None = None,
        blob_client: BlobClient | None = None,
        container_client: ContainerClient | None = None,
    ) -> None:
        try:
            from azure.core.exceptions import (
                HttpResponseError,
                ResourceExistsError,
                ResourceNotFoundError,
            )
            from azure.storage.blob import BlobLeaseClient, BlobServiceClient
        except ImportError as exc:
            raise CloudSDKNotInstalledError(
                provider="azure", sdk_name="azure-storage-blob"
            ) from exc

        self.storage_account = storage_account
        self.container = container
        self.key = key
        self._HttpResponseError = HttpResponseError
        self._ResourceExistsError = ResourceExistsError
        self._ResourceNotFoundError = ResourceNotFoundError
        self._BlobLeaseClient = BlobLeaseClient
        self._leases: dict[str, BlobLeaseClient] = {}

        if blob_client is None:
            if container_client is None:
                if credential is None:
                    from azure.identity import DefaultAzureCredential

                    credential = DefaultAzureCredential()
                service = BlobServiceClient(
                    account_url=f"https://{storage_account}.blob.core.windows.net",
                    credential=credential,
                )
                container_client = service.get_container_client(container)
            blob_client = container_client.get_blob_client(key)
        self._container: ContainerClient | None = container_client
        self._blob: BlobClient = blob_client

    def _translate(self, exc: Exception, operation: str) -> DeploymentError:
        """Map Azure SDK errors onto the stage error taxonomy."""
        if isinstance(exc, self._HttpResponseError):
            status = getattr(exc, "status_code", None)
            error_code = str(getattr(exc, "error_code", "") or "")
            if status == 409 and error_code.startswith("Lease"):
                return StateLockUnavailableError(
                    self.key, f"State blob '{self.key}' is leased by another run"
                )
            if status == 412:
                return StateLockUnavailableError(
                    self.key, f"Lease on state blob '{self.key}' was lost"
                )
        return translate_azure_error(exc, operation)

    def read(self) -> tuple[InfrastructureState, str | None]:
        try:
            downloader = self._blob.download_blob()
            content = downloader.readall()
            etag = downloader.properties.etag
        except self._ResourceNotFoundError:
            return InfrastructureState(), None
        except Exception as exc:
            raise self._translate(exc, "state") from exc
        return _parse_state(content, f"{self.container}/{self.key}"), etag

    def _ensure_blob(self) -> None:
        """Leases need an existing blob: create an empty state on first use."""
        try:
            self._blob.upload_blob(
                _serialize_state(InfrastructureState()), overwrite=False
            )
            logger.info(f"Created state blob {self.container}/{self.key}")
        except self._ResourceExistsError:
            return
        except Exception as exc:
            raise self._translate(exc, "state") from exc

    def acquire_lease(self, duration: int) -> Lease:
        self._ensure_blob()
        try:
            lease_client = self._blob.acquire_lease(lease_duration=duration)
        except Exception as exc:
            raise self._translate(exc, "lock") from exc
        lease = Lease(
            key=self.key,
            lease_id=lease_client.id,
            duration=duration,
            expires_at=_utcnow() + timedelta(seconds=duration),
        )
        self._leases[lease.lease_id] = lease_client
        logger.debug(f"Acquired blob lease {lease.lease_id} on '{self.key}'")
        return lease

    def _lease_client(self, lease: Lease) -> BlobLeaseClient:
        client = self._leases.get(lease.lease_id)
        if client is None:
            client = self._BlobLeaseClient(self._blob, lease_id=lease.lease_id)
            self._leases[lease.lease_id] = client
        return client

    def renew_lease(self, lease: Lease) -> Lease:
        try:
            self._lease_client(lease).renew()
        except Exception as exc:
            raise self._translate(exc, "lock") from exc
        lease.extend()
        return lease

    def release_lease(self, lease: Lease) -> None:
        try:
            self._lease_client(lease).release()
        except Exception as exc:
            raise self._translate(exc, "lock") from exc
        finally:
            self._leases.pop(lease.lease_id, None)

    def write(self, state: InfrastructureState, lease: Lease) -> str:
        try:
            result = self._blob.upload_blob(
                _serialize_state(state),
                overwrite=True,
                lease=self._lease_client(lease),
            )
        except Exception as exc:
            raise self._translate(exc, "state") from exc
        return str(result.get("etag", "")) if isinstance(result, dict) else ""

    def document_location(self, name: str) -> str:
        return f"{self.container}/{self.key}.{name}"

    def _document_blob(self, name: str) -> BlobClient:
        """Sibling blob ``<key>.<name>`` in the state container."""
        if self._container is None:
            raise DeploymentError(
                operation="state",
                message=f"No container client for documents next to '{self.key}'",
            )
        return self._container.get_blob_client(f"{self.key}.{name}")

    def read_document(self, name: str) -> str | None:
        blob = self._document_blob(name)
        try:
            content = blob.download_blob().readall()
        except self._ResourceNotFoundError:
            return None
        except Exception as exc:
            raise self._translate(exc, "state") from exc
        return content.decode("utf-8") if isinstance(content, bytes) else content

    def write_document(self, name: str, content: str) -> None:
        blob = self._document_blob(name)
        try:
            blob.upload_blob(content, overwrite=True)
        except Exception as exc:
            raise self._translate(exc, "state") from exc


def create_state_backend(config: StateBackendConfig) -> BaseStateBackend:
    """Create a state backend from configuration."""
    if config.backend == StateBackendType.LOCAL:
        return LocalStateBackend(config.path, config.key)
    if config.backend == StateBackendType.AZURE_BLOB:
        if not config.storage_account:
            raise DeploymentError(
                operation="state",
                message="storage_account is required for the azure_blob backend.",
            )
        return AzureBlobStateBackend(
            storage_account=config.storage_account,
            container=config.container,
            key=config.key,
        )
    raise DeploymentError(
        operation="state", message=f"Unsupported state backend: {config.backend}"
    )


class LeaseKeeper:
    """Renews a lease in a background thread while a long apply runs.

    Renewal happens every third of the TTL. After a failed renewal the
    keeper stops; the backend then rejects the final write because the
    lease is no longer held.
    """

    def __init__(
        self,
        backend: BaseStateBackend,
        lease: Lease,
        interval: float | None = None,
    ) -> None:
        self._backend = backend
        self._lease = lease
        self.interval = interval if interval is not None else max(lease.duration / 3, 1)
        self.renewals = 0
        self._stop = threading.Event()
        self.error: DeploymentError | None = None
        self._thread = threading.Thread(
            target=self._run, name=f"lease-keeper-{lease.key}", daemon=True
        )

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._backend.renew_lease(self._lease)
            except DeploymentError as exc:
                logger.error(f"Failed to renew lease on '{self._lease.key}': {exc}")
                self.error = exc
                return
            self.renewals += 1

    def start(self) -> LeaseKeeper:
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join(timeout=5)

    def wait(self, timeout: float) -> bool:
        """Block until the keeper exits on its own. True if it did."""
        self._thread.join(timeout)
        return not self._thread.is_alive()


@contextmanager
def state_lock(
    backend: BaseStateBackend,
    duration: int = 60,
    attempts: int = 5,
    backoff: float = 2.0,
    keep_alive: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> Generator[Lease, None, None]:
    """Hold the state lease for the duration of a block.

    The lease is acquired with bounded exponential backoff on
    StateLockUnavailableError and always released on exit, including on
    KeyboardInterrupt, so a cancelled run leaves the last committed state
    and a free lock behind.

    Args:
        backend: State backend
        duration: Lease TTL in seconds
        attempts: Acquisition attempts before surfacing the lock error
        backoff: Initial delay between attempts in seconds
        keep_alive: Renew the lease in the background while the block runs
        sleep: Sleep function, replaceable in tests

    Yields:
        The held Lease
    """
    policy = RetryPolicy(max_attempts=attempts, base_delay=backoff, sleep=sleep)
    lease = policy.call(backend.acquire_lease, duration)
    keeper = LeaseKeeper(backend, lease).start() if keep_alive else None
    try:
        yield lease
    finally:
        if keeper is not None:
            keeper.stop()
        try:
            backend.release_lease(lease)
        except DeploymentError as exc:
            # The lease lapses on its own after its TTL
            logger.warning(f"Failed to release lease on '{lease.key}': {exc}")
