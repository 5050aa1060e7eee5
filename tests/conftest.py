"""Pytest configuration and shared fixtures for aksflow tests."""

import os
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from aksflow.models.infrastructure import ClusterConfig
from aksflow.models.pipeline import PipelineConfig

PIPELINE_YAML = """\
subscription_id: 00000000-0000-0000-0000-000000000000
cluster:
  location: eastus
  resource_group_name: demo-rg
  cluster_name: demo-aks
  dns_prefix: demo
  node_count: 1
state:
  backend: local
  path: .aksflow
registry:
  url: demoacr.azurecr.io
  repository: team/web
  tag_strategy: content
release:
  name: web
  namespace: apps
  replicas: 2
  source: app
  timeout_seconds: 60
  poll_interval: 5
"""


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test file operations.

    Yields:
        Path to temporary directory

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def isolated_env() -> Generator[dict[str, str], None, None]:
    """Provide isolated environment variables for testing.

    Saves current environment and restores after test.

    Yields:
        Dictionary of original environment variables
    """
    original_env = os.environ.copy()
    yield original_env
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def cluster_config() -> ClusterConfig:
    """Single fixed-size node, no autoscaling, no Log Analytics."""
    return ClusterConfig(
        location="eastus",
        resource_group_name="demo-rg",
        cluster_name="demo-aks",
        dns_prefix="demo",
        node_count=1,
    )


@pytest.fixture
def pipeline_yaml(tmp_path: Path) -> Path:
    """A pipeline.yaml with a local state backend and an app source dir."""
    (tmp_path / "app").mkdir()
    (tmp_path / "app" / "app.py").write_text("print('hello')\n", encoding="utf-8")
    path = tmp_path / "pipeline.yaml"
    path.write_text(PIPELINE_YAML, encoding="utf-8")
    return path


@pytest.fixture
def pipeline_config(tmp_path: Path) -> PipelineConfig:
    """Validated PipelineConfig rooted in tmp_path."""
    source = tmp_path / "app"
    source.mkdir(exist_ok=True)
    (source / "app.py").write_text("print('hello')\n", encoding="utf-8")
    return PipelineConfig.model_validate(
        {
            "cluster": {
                "resource_group_name": "demo-rg",
                "cluster_name": "demo-aks",
                "dns_prefix": "demo",
            },
            "state": {"backend": "local", "path": str(tmp_path / ".aksflow")},
            "registry": {"url": "demoacr.azurecr.io", "repository": "team/web"},
            "release": {
                "name": "web",
                "namespace": "apps",
                "replicas": 2,
                "source": str(source),
                "timeout_seconds": 60,
                "poll_interval": 5,
            },
        }
    )


# Configure pytest
def pytest_configure(config: Any) -> None:
    """Configure pytest with marker options."""
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests",
    )
    config.addinivalue_line(
        "markers",
        "unit: marks tests as unit tests",
    )
