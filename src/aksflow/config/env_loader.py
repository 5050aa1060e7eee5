"""Environment variable handling for configuration files.

Supports ``${VAR}`` and ``${VAR:-default}`` references in YAML text and
loading ``.env`` files through python-dotenv.
"""

import os
import re
from pathlib import Path

from dotenv import load_dotenv

from aksflow.lib.errors import ConfigError

ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def get_env_var(name: str, default: str | None = None) -> str | None:
    """Return an environment variable, or ``default`` when unset or empty."""
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value


def substitute_env_vars(text: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` references in text.

    Args:
        text: Raw configuration text

    Returns:
        Text with every reference substituted

    Raises:
        ConfigError: If a referenced variable is unset and has no default
    """

    def _replace(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        value = os.environ.get(name)
        if value is not None:
            return value
        if default is not None:
            return default
        raise ConfigError(
            name,
            f"Environment variable '{name}' is not set. "
            f"Set it or use ${{{name}:-default}} to provide a default.",
        )

    return ENV_VAR_PATTERN.sub(_replace, text)


def load_env_file(path: str | Path | None = None, override: bool = False) -> bool:
    """Load a .env file into the process environment.

    Args:
        path: Path to the .env file (defaults to ./.env)
        override: Whether values in the file replace existing variables

    Returns:
        True if a file was found and loaded
    """
    env_path = Path(path) if path else Path.cwd() / ".env"
    if not env_path.is_file():
        return False
    return load_dotenv(env_path, override=override)
