"""Configuration loading and validation for aksflow pipelines.

Main components:
- ConfigLoader: Load and validate pipeline.yaml files
- Environment variable substitution (${VAR_NAME} and ${VAR_NAME:-default})
- CLI/trigger overrides (key.path=value)
- Validation utilities for configuration data
"""

from aksflow.config.env_loader import get_env_var, load_env_file, substitute_env_vars
from aksflow.config.loader import ConfigLoader, find_config_file, parse_overrides

__all__ = [
    "ConfigLoader",
    "find_config_file",
    "parse_overrides",
    "substitute_env_vars",
    "get_env_var",
    "load_env_file",
]
