"""Validation utilities for aksflow configuration."""

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from aksflow.lib.errors import ConfigInvalidError
from aksflow.models.infrastructure import ClusterConfig


def flatten_pydantic_errors(exc: PydanticValidationError) -> list[str]:
    """Flatten Pydantic ValidationError into human-readable messages.

    Args:
        exc: Pydantic ValidationError exception

    Returns:
        List of human-readable error messages, one per field error
    """
    errors: list[str] = []

    for error in exc.errors():
        loc = error.get("loc", ())
        field_path = ".".join(str(item) for item in loc) if loc else "unknown"

        msg = error.get("msg", "Unknown error")
        error_type = error.get("type", "")

        if error_type == "value_error":
            input_val = error.get("input")
            if isinstance(input_val, Mapping):
                formatted = f"Field '{field_path}': {msg}"
            else:
                formatted = f"Field '{field_path}': {msg} (received: {input_val!r})"
        else:
            formatted = f"Field '{field_path}': {msg}"

        errors.append(formatted)

    return errors if errors else ["Validation failed with unknown error"]


def validate_cluster_config(
    config: ClusterConfig | Mapping[str, Any],
) -> ClusterConfig:
    """Re-validate a cluster configuration from scratch.

    Instances built with ``model_construct`` or mutated after creation skip
    pydantic validation, so the planner always runs the full check before
    touching remote state.

    Args:
        config: A ClusterConfig instance or a raw mapping

    Returns:
        A freshly validated ClusterConfig

    Raises:
        ConfigInvalidError: If any invariant is violated
    """
    if isinstance(config, ClusterConfig):
        data: Any = dict(config.__dict__)
    else:
        data = dict(config)

    try:
        return ClusterConfig.model_validate(data)
    except PydanticValidationError as e:
        problems = flatten_pydantic_errors(e)
        raise ConfigInvalidError(
            "cluster",
            "Invalid cluster configuration:\n" + "\n".join(problems),
            problems=problems,
        ) from e
