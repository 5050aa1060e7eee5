"""Tests for the exception hierarchy in aksflow.lib.errors."""

import pytest

from aksflow.lib.errors import (
    AksFlowError,
    AuthorizationError,
    CloudSDKNotInstalledError,
    ConfigError,
    ConfigInvalidError,
    DeploymentError,
    PlatformTransientError,
    QuotaExceededError,
    RegistryAuthError,
    RegistryUnavailableError,
    RolloutFailedError,
    RolloutTimedOutError,
    StalePlanError,
    StateLockUnavailableError,
    TemplateInvalidError,
    ValidationError,
)


class TestAksFlowError:
    """Tests for base AksFlowError exception."""

    def test_creates_with_message(self) -> None:
        error = AksFlowError("Test error message")
        assert str(error) == "Test error message"

    @pytest.mark.parametrize(
        "error",
        [
            ConfigError("name", "required"),
            ValidationError("a.b", "bad", "int", "str"),
            DeploymentError("apply", "boom"),
        ],
    )
    def test_subclasses_share_base(self, error: Exception) -> None:
        assert isinstance(error, AksFlowError)


class TestConfigErrors:
    """Tests for configuration errors."""

    def test_config_error_formats_field(self) -> None:
        error = ConfigError("release.name", "Field is required")

        assert str(error) == (
            "Configuration error in 'release.name': Field is required"
        )
        assert error.field == "release.name"

    def test_config_invalid_collects_problems(self) -> None:
        error = ConfigInvalidError("cluster", "Invalid", problems=["a", "b"])

        assert isinstance(error, ConfigError)
        assert error.problems == ["a", "b"]
        assert error.retryable is False

    def test_config_invalid_defaults_problems_to_message(self) -> None:
        assert ConfigInvalidError("cluster", "Invalid").problems == ["Invalid"]

    def test_validation_error_message(self) -> None:
        error = ValidationError("replicas", "out of range", "0-500", "900")

        assert "Expected: 0-500" in str(error)
        assert "Got: 900" in str(error)


class TestDeploymentErrors:
    """Tests for the stage error taxonomy."""

    @pytest.mark.parametrize(
        ("error", "retryable"),
        [
            (StateLockUnavailableError("prod.tfstate"), True),
            (PlatformTransientError("apply", "429"), True),
            (RegistryUnavailableError("timeout"), True),
            (AuthorizationError("apply", "403"), False),
            (QuotaExceededError("apply", "cores"), False),
            (RegistryAuthError("unauthorized"), False),
            (StalePlanError(1, 2), False),
            (TemplateInvalidError("missing"), False),
            (RolloutFailedError("web", "crash"), False),
            (RolloutTimedOutError("web", 60), False),
        ],
    )
    def test_retryable_flags(self, error: DeploymentError, retryable: bool) -> None:
        assert error.retryable is retryable

    def test_lock_error_message(self) -> None:
        error = StateLockUnavailableError("prod.tfstate")

        assert error.operation == "lock"
        assert str(error) == (
            "lock failed: State 'prod.tfstate' is locked by another run"
        )

    def test_stale_plan_names_serials(self) -> None:
        error = StalePlanError(3, 4)

        assert (error.expected_serial, error.actual_serial) == (3, 4)
        assert "serial 3" in str(error)
        assert "current serial is 4" in str(error)

    def test_timeout_is_not_a_failure(self) -> None:
        """Timed-out and failed rollouts are separate types."""
        timed_out = RolloutTimedOutError("web", 300)

        assert not isinstance(timed_out, RolloutFailedError)
        assert "did not complete within 300s" in str(timed_out)

    def test_cloud_sdk_error_names_package(self) -> None:
        error = CloudSDKNotInstalledError("azure", "azure-mgmt-containerservice")

        assert "pip install azure-mgmt-containerservice" in str(error)
