"""Unit tests for manifest rendering."""

from __future__ import annotations

from pathlib import Path

import pytest

from aksflow.deploy.manifest import (
    DEFAULT_MANIFEST_TEMPLATE,
    build_values,
    load_template,
    render,
)
from aksflow.lib.errors import TemplateInvalidError
from aksflow.models.pipeline import ReleaseConfig
from aksflow.models.release import ImageReference

IMAGE = ImageReference(
    registry="demoacr.azurecr.io",
    repository="team/web",
    tag="sha-0123456789ab",
    digest="sha256:" + "a" * 64,
)


@pytest.fixture
def release() -> ReleaseConfig:
    return ReleaseConfig(
        name="web",
        namespace="apps",
        replicas=2,
        environment={"LOG_LEVEL": "info", "GREETING": "hello: world"},
    )


@pytest.mark.unit
class TestBuildValues:
    """Tests for build_values."""

    def test_pins_image_digest(self, release: ReleaseConfig) -> None:
        values = build_values(release, IMAGE)

        assert values["image"] == f"demoacr.azurecr.io/team/web@sha256:{'a' * 64}"
        assert values["replicas"] == 2

    def test_replica_override(self, release: ReleaseConfig) -> None:
        assert build_values(release, IMAGE, replicas=0)["replicas"] == 0


@pytest.mark.unit
class TestRender:
    """Tests for rendering the default and custom templates."""

    def test_default_template(self, release: ReleaseConfig) -> None:
        manifest = render(DEFAULT_MANIFEST_TEMPLATE, build_values(release, IMAGE))

        assert [doc["kind"] for doc in manifest.documents] == ["Deployment", "Service"]
        deployment = manifest.deployment
        assert deployment["metadata"]["name"] == "web"
        assert deployment["spec"]["replicas"] == 2
        container = deployment["spec"]["template"]["spec"]["containers"][0]
        assert container["image"] == IMAGE.pinned_uri
        assert container["env"] == [
            {"name": "GREETING", "value": "hello: world"},
            {"name": "LOG_LEVEL", "value": "info"},
        ]
        annotations = deployment["metadata"]["annotations"]
        assert annotations["aksflow.io/values-hash"] == manifest.values_hash

    def test_no_environment_renders_no_env(self) -> None:
        values = build_values(ReleaseConfig(name="web"), IMAGE)

        container = render(DEFAULT_MANIFEST_TEMPLATE, values).deployment["spec"][
            "template"
        ]["spec"]["containers"][0]

        assert "env" not in container

    def test_values_hash_is_stable(self, release: ReleaseConfig) -> None:
        values = build_values(release, IMAGE)

        first = render(DEFAULT_MANIFEST_TEMPLATE, values)
        second = render(DEFAULT_MANIFEST_TEMPLATE, dict(values))

        assert first.values_hash == second.values_hash
        assert first.text == second.text

    @pytest.mark.parametrize("missing", ["name", "image", "replicas"])
    def test_missing_required_value(
        self, release: ReleaseConfig, missing: str
    ) -> None:
        values = build_values(release, IMAGE)
        del values[missing]

        match = f"Missing required values: {missing}"
        with pytest.raises(TemplateInvalidError, match=match):
            render(DEFAULT_MANIFEST_TEMPLATE, values)

    def test_undefined_variable(self, release: ReleaseConfig) -> None:
        template = DEFAULT_MANIFEST_TEMPLATE + "\n# {{ not_provided }}\n"

        with pytest.raises(TemplateInvalidError, match="Undefined template variable"):
            render(template, build_values(release, IMAGE))

    def test_invalid_yaml(self, release: ReleaseConfig) -> None:
        with pytest.raises(TemplateInvalidError, match="not valid YAML"):
            render("kind: [unclosed\n", build_values(release, IMAGE))

    def test_document_without_kind(self, release: ReleaseConfig) -> None:
        with pytest.raises(TemplateInvalidError, match="with a 'kind'"):
            render("name: {{ name }}\n", build_values(release, IMAGE))

    def test_manifest_without_deployment(self, release: ReleaseConfig) -> None:
        manifest = render(
            "kind: ConfigMap\nmetadata:\n  name: {{ name }}\n",
            build_values(release, IMAGE),
        )

        with pytest.raises(TemplateInvalidError, match="does not contain a Deployment"):
            _ = manifest.deployment


@pytest.mark.unit
class TestLoadTemplate:
    """Tests for load_template."""

    def test_default(self) -> None:
        assert load_template(None) == DEFAULT_MANIFEST_TEMPLATE

    def test_custom_file(self, tmp_path: Path) -> None:
        path = tmp_path / "deploy.yaml.j2"
        path.write_text("kind: Deployment\n", encoding="utf-8")

        assert load_template(path) == "kind: Deployment\n"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(TemplateInvalidError, match="Cannot read manifest template"):
            load_template(tmp_path / "missing.j2")
