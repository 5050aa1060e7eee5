"""Configuration loader for aksflow pipelines.

This module provides the ConfigLoader class for loading, parsing, and
validating ``pipeline.yaml`` files.
"""

import logging
import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from aksflow.config.defaults import DEFAULT_CONFIG_FILENAMES, ENV_VAR_MAP
from aksflow.config.env_loader import load_env_file, substitute_env_vars
from aksflow.config.validator import flatten_pydantic_errors
from aksflow.lib.errors import ConfigError, ConfigInvalidError, FileNotFoundError
from aksflow.models.pipeline import PipelineConfig

logger = logging.getLogger(__name__)


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> None:
    """Deep merge override dict into base dict (in-place).

    For nested dicts, merging is recursive.
    For other types, override completely replaces base.
    """
    for key, override_value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(override_value, Mapping)
        ):
            _deep_merge(base[key], override_value)
        elif isinstance(override_value, Mapping):
            base[key] = {}
            _deep_merge(base[key], override_value)
        else:
            base[key] = override_value


def _set_path(data: dict[str, Any], dotted: str, value: Any) -> None:
    """Set ``a.b.c`` in a nested dict, creating intermediate dicts."""
    parts = dotted.split(".")
    node = data
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def parse_overrides(pairs: Iterable[str]) -> dict[str, Any]:
    """Parse ``key.path=value`` pairs into a nested override dict.

    Values are parsed as YAML scalars, so ``true``, ``3`` and ``1.5`` become
    bool, int and float.

    Raises:
        ConfigError: If a pair has no ``=`` or an empty key
    """
    overrides: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigError(
                "overrides", f"Invalid override {pair!r}. Expected key.path=value"
            )
        try:
            value = yaml.safe_load(raw) if raw.strip() else ""
        except yaml.YAMLError:
            value = raw
        _set_path(overrides, key, value)
    return overrides


def env_overrides(env_vars: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Collect AKSFLOW_* environment overrides as a nested dict."""
    env_vars = os.environ if env_vars is None else env_vars
    overrides: dict[str, Any] = {}
    for dotted, env_name in ENV_VAR_MAP.items():
        raw = env_vars.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            value = yaml.safe_load(raw)
        except yaml.YAMLError:
            value = raw
        _set_path(overrides, dotted, value)
    return overrides


def find_config_file(directory: str | Path = ".") -> Path | None:
    """Return the first pipeline.yaml/pipeline.yml found in a directory."""
    base = Path(directory)
    for name in DEFAULT_CONFIG_FILENAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


class ConfigLoader:
    """Loads and validates pipeline configuration from YAML files.

    Configuration precedence (highest to lowest):
    1. Explicit overrides (CLI ``--set`` or pipeline trigger overrides)
    2. AKSFLOW_* environment variables
    3. pipeline.yaml
    4. Model defaults
    """

    def __init__(self, env_file: str | Path | None = None) -> None:
        """Initialize the loader, optionally loading a .env file first."""
        self._env_file = env_file

    def parse_yaml(self, file_path: str | Path) -> dict[str, Any]:
        """Parse a YAML file with environment variable substitution.

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigError: If YAML parsing fails or the document is not a mapping
        """
        path = Path(file_path)
        try:
            raw_text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise FileNotFoundError(
                str(file_path),
                f"Configuration file not found at {file_path}. "
                "Please ensure the file exists at this path.",
            ) from e

        substituted = substitute_env_vars(raw_text)
        try:
            content = yaml.safe_load(substituted)
        except yaml.YAMLError as e:
            raise ConfigError(
                "yaml_parse",
                f"Failed to parse YAML file {file_path}: {str(e)}",
            ) from e

        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigError(
                "yaml_parse",
                f"Expected a mapping at the top of {file_path}, "
                f"got {type(content).__name__}",
            )
        return content

    def load_pipeline_config(
        self,
        file_path: str | Path,
        overrides: Mapping[str, Any] | None = None,
    ) -> PipelineConfig:
        """Load and validate a pipeline configuration.

        Args:
            file_path: Path to pipeline.yaml
            overrides: Nested overrides applied last

        Returns:
            Validated PipelineConfig

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigError: If YAML parsing fails
            ConfigInvalidError: If the configuration violates the schema
                or an invariant
        """
        if self._env_file is not None:
            load_env_file(self._env_file)
        else:
            load_env_file(Path(file_path).parent / ".env")

        data = self.parse_yaml(file_path)
        _deep_merge(data, env_overrides())
        if overrides:
            _deep_merge(data, overrides)

        try:
            config = PipelineConfig.model_validate(data)
        except PydanticValidationError as e:
            problems = flatten_pydantic_errors(e)
            raise ConfigInvalidError(
                "pipeline",
                f"Invalid pipeline configuration in {file_path}:\n"
                + "\n".join(problems),
                problems=problems,
            ) from e

        logger.debug(
            f"Loaded pipeline configuration from {file_path} "
            f"(cluster={config.cluster.cluster_name}, release={config.release.name})"
        )
        return config
