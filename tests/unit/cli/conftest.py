"""Fixtures shared by CLI command tests."""

from collections.abc import Generator
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def no_logging_setup() -> Generator[MagicMock, None, None]:
    """Keep CLI commands from replacing the root logging handlers."""
    with patch("aksflow.cli.common.setup_logging") as setup:
        yield setup
