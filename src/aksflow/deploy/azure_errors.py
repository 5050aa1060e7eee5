"""Classification of Azure SDK exceptions into stage errors."""

from __future__ import annotations

from aksflow.config.defaults import AZURE_QUOTA_ERROR_CODES, TRANSIENT_STATUS_CODES
from aksflow.lib.errors import (
    AuthorizationError,
    DeploymentError,
    PlatformTransientError,
    QuotaExceededError,
)


def _error_code(exc: Exception) -> str:
    error = getattr(exc, "error", None)
    code = getattr(error, "code", None) or getattr(exc, "error_code", None)
    return str(code or "")


def translate_azure_error(exc: Exception, operation: str) -> DeploymentError:
    """Map an Azure SDK exception onto the error taxonomy.

    - authentication failures, 401 and 403 -> AuthorizationError (fatal)
    - quota error codes -> QuotaExceededError (fatal)
    - connection errors, 408/409/429/5xx -> PlatformTransientError (retried)
    - anything else -> DeploymentError

    Args:
        exc: Exception raised by an Azure SDK call
        operation: Operation name recorded on the resulting error

    Returns:
        The matching DeploymentError subclass instance
    """
    from azure.core.exceptions import (
        ClientAuthenticationError,
        HttpResponseError,
        ServiceRequestError,
        ServiceResponseError,
    )

    message = str(exc)
    if isinstance(exc, ClientAuthenticationError):
        return AuthorizationError(operation=operation, message=message)
    if isinstance(exc, (ServiceRequestError, ServiceResponseError)):
        return PlatformTransientError(operation=operation, message=message)
    if isinstance(exc, HttpResponseError):
        status = getattr(exc, "status_code", None)
        code = _error_code(exc)
        if status in (401, 403) or code == "AuthorizationFailed":
            return AuthorizationError(operation=operation, message=message)
        if code in AZURE_QUOTA_ERROR_CODES or "quota" in message.lower():
            return QuotaExceededError(operation=operation, message=message)
        if status in TRANSIENT_STATUS_CODES:
            return PlatformTransientError(operation=operation, message=message)
    return DeploymentError(operation=operation, message=message)
