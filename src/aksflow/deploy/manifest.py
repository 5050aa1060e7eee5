"""Kubernetes manifest rendering.

Manifests are Jinja2 templates rendered with ``StrictUndefined``: any
variable the template references but the values do not provide is an
error, never an empty string in a deployed object.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, StrictUndefined, TemplateError, UndefinedError

from aksflow.lib.errors import TemplateInvalidError
from aksflow.models.pipeline import ReleaseConfig
from aksflow.models.release import ImageReference

REQUIRED_VALUES = ("name", "image", "replicas")

DEFAULT_MANIFEST_TEMPLATE = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: {{ name }}
  namespace: {{ namespace }}
  labels:
    app.kubernetes.io/name: {{ name }}
    app.kubernetes.io/managed-by: aksflow
  annotations:
    aksflow.io/values-hash: "{{ values_hash }}"
spec:
  replicas: {{ replicas }}
  selector:
    matchLabels:
      app.kubernetes.io/name: {{ name }}
  template:
    metadata:
      labels:
        app.kubernetes.io/name: {{ name }}
    spec:
      containers:
        - name: {{ name }}
          image: {{ image }}
          ports:
            - containerPort: {{ container_port }}
{% if environment %}
          env:
{% for key, value in environment | dictsort %}
            - name: {{ key }}
              value: {{ value | tojson }}
{% endfor %}
{% endif %}
          resources:
            requests:
              cpu: {{ cpu_request }}
              memory: {{ memory_request }}
            limits:
              cpu: {{ cpu_limit }}
              memory: {{ memory_limit }}
---
apiVersion: v1
kind: Service
metadata:
  name: {{ name }}
  namespace: {{ namespace }}
  labels:
    app.kubernetes.io/name: {{ name }}
    app.kubernetes.io/managed-by: aksflow
spec:
  type: {{ service_type }}
  selector:
    app.kubernetes.io/name: {{ name }}
  ports:
    - port: {{ service_port }}
      targetPort: {{ container_port }}
"""


@dataclass
class Manifest:
    """Rendered manifest documents.

    Attributes:
        documents: Parsed Kubernetes objects, in template order
        text: Rendered YAML text
        values_hash: Hash of the values the manifest was rendered from
    """

    documents: list[dict[str, Any]]
    text: str
    values_hash: str
    values: dict[str, Any] = field(default_factory=dict)

    def find(self, kind: str) -> dict[str, Any] | None:
        for document in self.documents:
            if document.get("kind") == kind:
                return document
        return None

    @property
    def deployment(self) -> dict[str, Any]:
        """The Deployment object the rollout is tracked against."""
        deployment = self.find("Deployment")
        if deployment is None:
            raise TemplateInvalidError("Manifest does not contain a Deployment")
        return deployment


def hash_values(values: Mapping[str, Any]) -> str:
    payload = json.dumps(values, sort_keys=True, default=str)
    return "sha256:" + hashlib.sha256(payload.encode("utf-8")).hexdigest()


def build_values(
    release: ReleaseConfig,
    image: ImageReference,
    replicas: int | None = None,
) -> dict[str, Any]:
    """Build template values for a release and image.

    The digest-pinned reference is used when the digest is known, so the
    cluster runs exactly the image that was pushed.
    """
    return {
        "name": release.name,
        "namespace": release.namespace,
        "image": image.pinned_uri,
        "replicas": release.replicas if replicas is None else replicas,
        "container_port": release.container_port,
        "service_port": release.service_port,
        "service_type": release.service_type,
        "cpu_request": release.cpu_request,
        "memory_request": release.memory_request,
        "cpu_limit": release.cpu_limit,
        "memory_limit": release.memory_limit,
        "environment": dict(release.environment),
    }


def load_template(path: str | Path | None) -> str:
    """Read a manifest template, or return the default one."""
    if path is None:
        return DEFAULT_MANIFEST_TEMPLATE
    template_path = Path(path)
    try:
        return template_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TemplateInvalidError(
            f"Cannot read manifest template {template_path}: {exc}"
        ) from exc


_environment = Environment(  # nosec B701
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
)


def render(template: str, values: Mapping[str, Any]) -> Manifest:
    """Render a manifest template into Kubernetes objects.

    Args:
        template: Jinja2 template text
        values: Template values

    Returns:
        The rendered Manifest

    Raises:
        TemplateInvalidError: If a required value is missing or empty, the
            template references an undefined variable, or the output is not
            valid YAML
    """
    missing = [key for key in REQUIRED_VALUES if values.get(key) in (None, "")]
    if missing:
        raise TemplateInvalidError(f"Missing required values: {', '.join(missing)}")

    values_hash = hash_values(values)
    try:
        text = _environment.from_string(template).render(
            {**values, "values_hash": values_hash}
        )
    except UndefinedError as exc:
        raise TemplateInvalidError(f"Undefined template variable: {exc}") from exc
    except TemplateError as exc:
        raise TemplateInvalidError(f"Template error: {exc}") from exc

    try:
        documents = [doc for doc in yaml.safe_load_all(text) if doc]
    except yaml.YAMLError as exc:
        raise TemplateInvalidError(
            f"Rendered manifest is not valid YAML: {exc}"
        ) from exc

    for document in documents:
        if not isinstance(document, dict) or "kind" not in document:
            raise TemplateInvalidError(
                "Every manifest document must be a Kubernetes object with a 'kind'"
            )
    if not documents:
        raise TemplateInvalidError("Rendered manifest is empty")

    return Manifest(
        documents=documents, text=text, values_hash=values_hash, values=dict(values)
    )
