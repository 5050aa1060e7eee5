"""Logging configuration for aksflow.

Provides a single setup entry point used by every CLI command and a
filter that keeps cluster credentials and registry secrets out of log
output.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import Any

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

REDACTED = "***REDACTED***"

SENSITIVE_KEYS = frozenset(
    {
        "client_key",
        "client_certificate",
        "cluster_ca_certificate",
        "password",
        "token",
        "kube_config",
        "secret",
    }
)

_PEM_PATTERN = re.compile(
    r"-----BEGIN [A-Z ]+-----.*?-----END [A-Z ]+-----", re.DOTALL
)
_KEY_VALUE_PATTERN = re.compile(
    r"(?P<key>" + "|".join(sorted(SENSITIVE_KEYS)) + r")"
    r"(?P<sep>['\"]?\s*[:=]\s*['\"]?)(?P<value>[^\s'\",}]+)",
    re.IGNORECASE,
)


def redact(text: str) -> str:
    """Mask PEM blocks and values of sensitive keys in a string."""
    text = _PEM_PATTERN.sub(REDACTED, text)
    return _KEY_VALUE_PATTERN.sub(
        lambda m: f"{m.group('key')}{m.group('sep')}{REDACTED}", text
    )


def redact_mapping(data: Any) -> Any:
    """Return a copy of nested dicts/lists with sensitive values masked."""
    if isinstance(data, dict):
        return {
            key: (
                REDACTED
                if str(key).lower() in SENSITIVE_KEYS and value is not None
                else redact_mapping(value)
            )
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact_mapping(item) for item in data]
    if isinstance(data, str):
        return redact(data)
    return data


class RedactingFilter(logging.Filter):
    """Logging filter that redacts credentials from formatted messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def get_logger(name: str) -> logging.Logger:
    """Return a module logger.

    Args:
        name: Logger name, usually ``__name__``

    Returns:
        Logger instance under the aksflow hierarchy
    """
    return logging.getLogger(name)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logging for CLI commands.

    Level resolution order:
    1. ``AKSFLOW_LOG_LEVEL`` environment variable
    2. ``--verbose`` (DEBUG) / ``--quiet`` (WARNING)
    3. INFO

    Args:
        verbose: Enable debug logging
        quiet: Only log warnings and errors
    """
    env_level = os.environ.get("AKSFLOW_LOG_LEVEL")
    if env_level and env_level.upper() in logging.getLevelNamesMapping():
        level = logging.getLevelNamesMapping()[env_level.upper()]
    elif verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(RedactingFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    # Azure SDK HTTP logging is extremely chatty at INFO
    logging.getLogger("azure").setLevel(max(level, logging.WARNING))
    logging.getLogger("urllib3").setLevel(max(level, logging.WARNING))
    logging.getLogger("docker").setLevel(max(level, logging.WARNING))
    logging.getLogger("kubernetes").setLevel(max(level, logging.WARNING))
