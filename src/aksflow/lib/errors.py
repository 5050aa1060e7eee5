"""Custom exception hierarchy for aksflow configuration and pipeline stages."""


class AksFlowError(Exception):
    """Base exception for all aksflow errors.

    All aksflow-specific exceptions inherit from this class, enabling
    centralized exception handling in the CLI and the pipeline runner.
    """

    pass


class ConfigError(AksFlowError):
    """Exception raised for configuration errors.

    This exception is raised when configuration loading or parsing fails.
    It includes field-specific information to help users identify and fix
    configuration issues.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class ValidationError(AksFlowError):
    """Exception raised for validation errors during configuration parsing.

    Attributes:
        field: The field that failed validation
        message: Description of the validation failure
        expected: Human description of expected value/type
        actual: The actual value that failed validation
    """

    def __init__(
        self,
        field: str,
        message: str,
        expected: str,
        actual: str,
    ) -> None:
        """Initialize ValidationError with detailed information.

        Args:
            field: Field that failed validation (dot notation for nested fields)
            message: Description of what went wrong
            expected: Human-readable description of expected value
            actual: The actual value that failed
        """
        self.field = field
        self.message = message
        self.expected = expected
        self.actual = actual
        full_message = (
            f"Validation error in '{field}': {message}\n"
            f"  Expected: {expected}\n"
            f"  Got: {actual}"
        )
        super().__init__(full_message)


class FileNotFoundError(AksFlowError):
    """Exception raised when a configuration file is not found.

    Attributes:
        path: Path to the file that was not found
        message: Human-readable error message
    """

    def __init__(self, path: str, message: str) -> None:
        """Initialize FileNotFoundError with path and message."""
        self.path = path
        self.message = message
        super().__init__(f"File not found: {path}\n{message}")


class ConfigInvalidError(ConfigError):
    """Deployment configuration violates an invariant.

    Raised before any remote call is made. Never retried, and blocks every
    pipeline stage.

    Attributes:
        problems: Individual violation messages
    """

    retryable = False

    def __init__(self, field: str, message: str, problems: list[str] | None = None):
        """Create a ConfigInvalidError.

        Args:
            field: Configuration field (or section) that is invalid
            message: Summary message
            problems: Optional list of individual violations
        """
        self.problems = problems or [message]
        super().__init__(field, message)


class DeploymentError(AksFlowError):
    """Exception raised when a pipeline stage operation fails.

    Attributes:
        operation: The operation that failed (plan, apply, build, push, ...)
        message: Human-readable error message
        retryable: Whether the retry policy may attempt the operation again
    """

    retryable = False

    def __init__(self, operation: str, message: str) -> None:
        """Initialize DeploymentError with operation and message.

        Args:
            operation: Name of the failed operation
            message: Descriptive error message
        """
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} failed: {message}")


class StateLockUnavailableError(DeploymentError):
    """Another run holds the lease on the remote state record."""

    retryable = True

    def __init__(self, key: str, message: str | None = None) -> None:
        """Create a lock error for the given state key."""
        self.key = key
        super().__init__(
            operation="lock",
            message=message or f"State '{key}' is locked by another run",
        )


class StalePlanError(DeploymentError):
    """The remote state changed after the change set was computed."""

    def __init__(self, expected_serial: int, actual_serial: int) -> None:
        """Create a stale-plan error from the two state serials."""
        self.expected_serial = expected_serial
        self.actual_serial = actual_serial
        super().__init__(
            operation="apply",
            message=(
                f"Plan was computed against state serial {expected_serial} but "
                f"the current serial is {actual_serial}. Run plan again."
            ),
        )


class PlatformTransientError(DeploymentError):
    """Rate limiting or eventual-consistency lag on the target platform."""

    retryable = True


class AuthorizationError(DeploymentError):
    """Credentials were rejected by the platform. Fatal."""


class QuotaExceededError(DeploymentError):
    """The subscription quota does not allow the requested resources. Fatal."""


class RegistryAuthError(DeploymentError):
    """The container registry rejected the credentials. Fatal."""

    def __init__(self, message: str) -> None:
        """Create a registry authentication error."""
        super().__init__(operation="push", message=message)


class RegistryUnavailableError(DeploymentError):
    """The container registry could not be reached. Retried."""

    retryable = True

    def __init__(self, message: str) -> None:
        """Create a registry availability error."""
        super().__init__(operation="push", message=message)


class TemplateInvalidError(DeploymentError):
    """The deployment template could not be rendered."""

    def __init__(self, message: str) -> None:
        """Create a template rendering error."""
        super().__init__(operation="render", message=message)


class RolloutFailedError(DeploymentError):
    """Pods of the new release are actively broken (crash looping, bad image)."""

    def __init__(self, release: str, message: str) -> None:
        """Create a rollout failure for a release."""
        self.release = release
        super().__init__(operation="rollout", message=message)


class RolloutTimedOutError(DeploymentError):
    """The rollout did not converge within the configured timeout.

    Distinct from RolloutFailedError: the release may still be converging,
    and an operator decides what to do next.
    """

    def __init__(self, release: str, timeout: float, message: str | None = None):
        """Create a rollout timeout for a release."""
        self.release = release
        self.timeout = timeout
        super().__init__(
            operation="rollout",
            message=message
            or f"Release '{release}' did not complete within {timeout:g}s",
        )


class DockerNotAvailableError(DeploymentError):
    """The Docker daemon is not reachable."""

    def __init__(self, operation: str = "build") -> None:
        """Create an error for a missing Docker daemon."""
        super().__init__(
            operation=operation,
            message=(
                "Docker daemon is not available. "
                "Ensure Docker is installed and running: docker info"
            ),
        )


class CloudSDKNotInstalledError(DeploymentError):
    """A cloud provider SDK required by the operation is not installed."""

    def __init__(self, provider: str, sdk_name: str) -> None:
        """Create an error naming the missing SDK and how to install it."""
        self.provider = provider
        self.sdk_name = sdk_name
        super().__init__(
            operation="init",
            message=(
                f"The {provider} SDK is not installed. "
                f"Install it with: pip install {sdk_name}"
            ),
        )
