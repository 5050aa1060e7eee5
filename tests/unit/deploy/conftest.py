"""Mocked Azure SDK modules for the Azure provisioner and blob state tests."""

from __future__ import annotations

import sys
import types
from typing import Any
from unittest.mock import MagicMock

import pytest


class DummyModel:
    """Simple container for Azure SDK model attributes."""

    def __init__(self, **kwargs: Any) -> None:
        for key, value in kwargs.items():
            setattr(self, key, value)


def _exceptions_module() -> types.ModuleType:
    module = types.ModuleType("azure.core.exceptions")

    class AzureError(Exception):
        pass

    class HttpResponseError(AzureError):
        def __init__(
            self,
            message: str = "error",
            status_code: int | None = None,
            error_code: str | None = None,
        ) -> None:
            super().__init__(message)
            self.message = message
            self.status_code = status_code
            self.error_code = error_code
            self.error = DummyModel(code=error_code) if error_code else None

    class ResourceNotFoundError(HttpResponseError):
        pass

    class ResourceExistsError(HttpResponseError):
        pass

    class ClientAuthenticationError(HttpResponseError):
        pass

    class ServiceRequestError(AzureError):
        pass

    class ServiceResponseError(AzureError):
        pass

    for cls in (
        AzureError,
        HttpResponseError,
        ResourceNotFoundError,
        ResourceExistsError,
        ClientAuthenticationError,
        ServiceRequestError,
        ServiceResponseError,
    ):
        setattr(module, cls.__name__, cls)
    return module


@pytest.fixture
def azure_sdk(monkeypatch: pytest.MonkeyPatch) -> types.SimpleNamespace:
    """Install mocked Azure SDK modules into sys.modules.

    Returns a namespace with the exception module and the MagicMock client
    classes so tests can script responses.
    """
    exceptions = _exceptions_module()

    identity_module = types.ModuleType("azure.identity")
    identity_module.DefaultAzureCredential = MagicMock(  # type: ignore[attr-defined]
        return_value="credential"
    )

    resource_module = types.ModuleType("azure.mgmt.resource")
    resource_module.ResourceManagementClient = MagicMock()  # type: ignore[attr-defined]
    containerservice_module = types.ModuleType("azure.mgmt.containerservice")
    setattr(containerservice_module, "ContainerServiceClient", MagicMock())
    loganalytics_module = types.ModuleType("azure.mgmt.loganalytics")
    setattr(loganalytics_module, "LogAnalyticsManagementClient", MagicMock())

    blob_module = types.ModuleType("azure.storage.blob")
    blob_module.BlobServiceClient = MagicMock()  # type: ignore[attr-defined]
    blob_module.BlobLeaseClient = MagicMock()  # type: ignore[attr-defined]

    monkeypatch.setitem(sys.modules, "azure", types.ModuleType("azure"))
    monkeypatch.setitem(sys.modules, "azure.core", types.ModuleType("azure.core"))
    monkeypatch.setitem(sys.modules, "azure.core.exceptions", exceptions)
    monkeypatch.setitem(sys.modules, "azure.identity", identity_module)
    monkeypatch.setitem(sys.modules, "azure.mgmt", types.ModuleType("azure.mgmt"))
    monkeypatch.setitem(sys.modules, "azure.mgmt.resource", resource_module)
    monkeypatch.setitem(
        sys.modules, "azure.mgmt.containerservice", containerservice_module
    )
    monkeypatch.setitem(sys.modules, "azure.mgmt.loganalytics", loganalytics_module)
    monkeypatch.setitem(sys.modules, "azure.storage", types.ModuleType("azure.storage"))
    monkeypatch.setitem(sys.modules, "azure.storage.blob", blob_module)

    return types.SimpleNamespace(
        exceptions=exceptions,
        identity=identity_module,
        resource=resource_module,
        containerservice=containerservice_module,
        loganalytics=loganalytics_module,
        blob=blob_module,
        model=DummyModel,
    )
