"""Image publisher: build and push content-addressed container images.

The ``content`` tag strategy derives the tag from a digest of the build
context, so identical sources always produce the same tag. Each publish
still builds and pushes; the registry keeps one manifest per digest.
"""

from __future__ import annotations

import hashlib
import os
import subprocess  # nosec B404
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import docker
from docker.errors import APIError, BuildError, DockerException
from docker.utils.build import exclude_paths
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import Timeout

from aksflow.deploy.dockerfile import generate_dockerfile
from aksflow.lib.errors import (
    DeploymentError,
    DockerNotAvailableError,
    RegistryAuthError,
    RegistryUnavailableError,
)
from aksflow.lib.logging_config import get_logger
from aksflow.lib.retry import RetryPolicy
from aksflow.models.pipeline import RegistryConfig, TagStrategy
from aksflow.models.release import ImageReference

if TYPE_CHECKING:
    from docker.models.images import Image

logger = get_logger(__name__)

CONTENT_TAG_PREFIX = "sha-"
CONTENT_TAG_LENGTH = 12

_AUTH_MARKERS = ("unauthorized", "denied", "authentication required", "forbidden")
_UNAVAILABLE_MARKERS = (
    "timeout",
    "timed out",
    "connection",
    "unavailable",
    "eof",
    "reset by peer",
    "too many requests",
    "internal server error",
    "bad gateway",
)


@dataclass
class BuildResult:
    """Result of a container image build operation.

    Attributes:
        image_id: The SHA256 ID of the built image
        image_name: The repository/image name
        tag: The image tag
        full_name: Full image reference (name:tag)
        log_lines: Build log output lines
    """

    image_id: str
    image_name: str
    tag: str
    full_name: str
    log_lines: list[str] = field(default_factory=list)

    @classmethod
    def from_image(
        cls,
        image: Image,
        image_name: str,
        tag: str,
        log_lines: list[str] | None = None,
    ) -> BuildResult:
        image_id = image.id or ""
        return cls(
            image_id=image_id,
            image_name=image_name,
            tag=tag,
            full_name=f"{image_name}:{tag}",
            log_lines=log_lines or [],
        )


def _read_dockerignore(context: Path) -> list[str]:
    path = context / ".dockerignore"
    if not path.exists():
        return []
    lines = [line.strip() for line in path.read_text(encoding="utf-8").splitlines()]
    return [line for line in lines if line and not line.startswith("#")]


def compute_context_digest(
    context: str | Path, dockerfile: str | Path = "Dockerfile"
) -> str:
    """Compute a deterministic digest of a build context.

    The digest covers the Dockerfile content and the relative path and
    content of every file docker would send, so ``.dockerignore`` rules
    apply. File order and timestamps do not affect the result.

    Args:
        context: Build context directory
        dockerfile: Dockerfile path, relative to the context or absolute

    Returns:
        Hex sha256 digest

    Raises:
        DeploymentError: If the context directory does not exist
    """
    root = Path(context)
    if not root.is_dir():
        raise DeploymentError(
            operation="build", message=f"Build context not found: {context}"
        )

    digest = hashlib.sha256()
    dockerfile_path = Path(dockerfile)
    if not dockerfile_path.is_absolute():
        dockerfile_path = root / dockerfile_path
    if dockerfile_path.is_file():
        digest.update(b"Dockerfile\0")
        digest.update(dockerfile_path.read_bytes())

    included = exclude_paths(str(root), _read_dockerignore(root), str(dockerfile))
    for relative in sorted(included):
        path = root / relative
        if not path.is_file():
            continue
        digest.update(relative.replace(os.sep, "/").encode("utf-8") + b"\0")
        digest.update(hashlib.sha256(path.read_bytes()).digest())
    return digest.hexdigest()


def _git(args: list[str], cwd: str | Path | None) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603  # nosec B603 B607
        ["git", *args],  # noqa: S607
        capture_output=True,
        text=True,
        cwd=cwd,
    )


def generate_tag(
    strategy: TagStrategy,
    custom_tag: str | None = None,
    context: str | Path | None = None,
    dockerfile: str | Path = "Dockerfile",
) -> str:
    """Generate an image tag based on the specified strategy.

    Args:
        strategy: Tag generation strategy
        custom_tag: Custom tag value when strategy is CUSTOM
        context: Build context (required for CONTENT, cwd for git strategies)
        dockerfile: Dockerfile path used by the CONTENT strategy

    Returns:
        Generated tag string

    Raises:
        ValueError: If a required argument for the strategy is missing
        DeploymentError: If git commands fail (not in repo, no tags, etc.)

    Example:
        >>> generate_tag(TagStrategy.LATEST)
        'latest'
        >>> generate_tag(TagStrategy.CUSTOM, custom_tag="v1.0.0")
        'v1.0.0'
    """
    if strategy == TagStrategy.CONTENT:
        if context is None:
            raise ValueError("context is required when using CONTENT strategy")
        digest = compute_context_digest(context, dockerfile)
        return f"{CONTENT_TAG_PREFIX}{digest[:CONTENT_TAG_LENGTH]}"

    if strategy == TagStrategy.LATEST:
        return "latest"

    if strategy == TagStrategy.CUSTOM:
        if not custom_tag:
            raise ValueError("custom_tag is required when using CUSTOM strategy")
        return custom_tag

    if strategy == TagStrategy.GIT_SHA:
        result = _git(["rev-parse", "HEAD"], context)
        if result.returncode != 0:
            raise DeploymentError(
                operation="tag_generation",
                message="Failed to get git SHA: not a git repository",
            )
        return result.stdout.strip()[:7]

    if strategy == TagStrategy.GIT_TAG:
        result = _git(["describe", "--tags", "--abbrev=0"], context)
        if result.returncode != 0:
            raise DeploymentError(
                operation="tag_generation",
                message="No git tags found. Create a tag first: git tag v1.0.0",
            )
        return result.stdout.strip()

    raise ValueError(f"Unknown tag strategy: {strategy}")


def get_oci_labels(
    name: str,
    version: str,
    source_sha: str | None = None,
) -> dict[str, str]:
    """Generate OCI-compliant container image labels.

    Example:
        >>> labels = get_oci_labels("web", "sha-0123456789ab")
        >>> labels["org.opencontainers.image.title"]
        'web'
    """
    created = datetime.now(timezone.utc).isoformat()

    labels = {
        "org.opencontainers.image.title": name,
        "org.opencontainers.image.version": version,
        "org.opencontainers.image.created": created,
        "io.aksflow.managed": "true",
    }

    if source_sha:
        labels["org.opencontainers.image.revision"] = source_sha[:7]

    return labels


def resolve_registry_auth(registry: RegistryConfig) -> dict[str, str] | None:
    """Read registry credentials from ``<PREFIX>_USERNAME``/``<PREFIX>_PASSWORD``.

    Returns None when no prefix is configured, in which case the docker
    daemon's stored credentials (``docker login``/``az acr login``) apply.

    Raises:
        RegistryAuthError: If the prefix is set but a variable is missing
    """
    prefix = registry.credentials_env_prefix
    if not prefix:
        return None
    username = os.environ.get(f"{prefix}_USERNAME")
    password = os.environ.get(f"{prefix}_PASSWORD")
    if not username or not password:
        raise RegistryAuthError(
            f"Registry credentials not set: define {prefix}_USERNAME "
            f"and {prefix}_PASSWORD"
        )
    return {"username": username, "password": password}


def image_reference(
    source: str | Path, dockerfile: str | Path, registry: RegistryConfig
) -> ImageReference:
    """Compute the image reference (and tag) for a source tree without building."""
    tag = generate_tag(
        registry.tag_strategy,
        custom_tag=registry.custom_tag,
        context=source,
        dockerfile=dockerfile,
    )
    return ImageReference(
        registry=registry.url, repository=registry.repository, tag=tag
    )


def _classify_push_message(message: str) -> DeploymentError:
    lowered = message.lower()
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return RegistryAuthError(message)
    if any(marker in lowered for marker in _UNAVAILABLE_MARKERS):
        return RegistryUnavailableError(message)
    return DeploymentError(operation="push", message=message)


def _classify_api_error(exc: APIError) -> DeploymentError:
    status = exc.status_code
    message = str(exc.explanation or exc)
    if status in (401, 403):
        return RegistryAuthError(message)
    if status == 429 or (status is not None and status >= 500):
        return RegistryUnavailableError(message)
    return _classify_push_message(message)


class ContainerBuilder:
    """Builds and pushes container images through the Docker SDK.

    Example:
        >>> builder = ContainerBuilder()
        >>> result = builder.build(
        ...     build_context="./app",
        ...     image_name="myacr.azurecr.io/web",
        ...     tag="sha-0123456789ab",
        ... )
        >>> print(result.full_name)
        'myacr.azurecr.io/web:sha-0123456789ab'
    """

    def __init__(self) -> None:
        """Connect to the Docker daemon using the environment configuration.

        Raises:
            DockerNotAvailableError: If Docker daemon is not available
        """
        try:
            self.client = docker.from_env()  # type: ignore[attr-defined]
        except DockerException as e:
            raise DockerNotAvailableError(operation="init") from e

    def build(
        self,
        build_context: str,
        image_name: str,
        tag: str,
        labels: dict[str, str] | None = None,
        dockerfile: str = "Dockerfile",
        platform: str = "linux/amd64",
        **build_kwargs: Any,
    ) -> BuildResult:
        """Build a container image from the specified context.

        Args:
            build_context: Path to the build context directory
            image_name: Repository/image name for the built image
            tag: Tag for the built image
            labels: Optional OCI labels to apply
            dockerfile: Path to Dockerfile relative to context, or absolute
            platform: Target platform for the image (default: linux/amd64)
            **build_kwargs: Additional arguments passed to Docker build

        Returns:
            BuildResult with image details and build logs

        Raises:
            DeploymentError: If build context doesn't exist or build fails
        """
        context_path = Path(build_context)
        if not context_path.exists():
            raise DeploymentError(
                operation="build",
                message=f"Build context not found: {build_context}",
            )

        full_tag = f"{image_name}:{tag}"
        logger.info(f"Building image {full_tag}")

        try:
            image, build_logs = self.client.images.build(
                path=str(context_path),
                tag=full_tag,
                dockerfile=dockerfile,
                labels=labels or {},
                rm=True,
                platform=platform,
                pull=True,
                **build_kwargs,
            )

            log_lines: list[str] = []
            for log_entry in build_logs:
                if isinstance(log_entry, dict):
                    if "stream" in log_entry:
                        stream_val = log_entry["stream"]
                        if isinstance(stream_val, str):
                            log_lines.append(stream_val.rstrip("\n"))
                    elif "error" in log_entry:
                        log_lines.append(f"ERROR: {log_entry['error']}")

            return BuildResult.from_image(
                image=image,
                image_name=image_name,
                tag=tag,
                log_lines=log_lines,
            )

        except BuildError as e:
            raise DeploymentError(
                operation="build",
                message=f"Docker build failed: {e.msg}",
            ) from e
        except DockerException as e:
            raise DeploymentError(
                operation="build",
                message=f"Docker error during build: {e}",
            ) from e

    def push(
        self, image: ImageReference, auth_config: dict[str, str] | None = None
    ) -> ImageReference:
        """Push an image and return the reference with its registry digest.

        Raises:
            RegistryAuthError: If the registry rejects the credentials
            RegistryUnavailableError: On connection failures, timeouts and 5xx
            DeploymentError: On any other push failure
        """
        logger.info(f"Pushing image {image.uri}")
        digest: str | None = None
        try:
            for event in self.client.images.push(
                image.name,
                tag=image.tag,
                auth_config=auth_config,
                stream=True,
                decode=True,
            ):
                if not isinstance(event, dict):
                    continue
                if "error" in event:
                    detail = event.get("errorDetail") or {}
                    raise _classify_push_message(
                        str(detail.get("message") or event["error"])
                    )
                aux = event.get("aux")
                if isinstance(aux, dict) and aux.get("Digest"):
                    digest = aux["Digest"]
        except APIError as e:
            raise _classify_api_error(e) from e
        except (RequestsConnectionError, Timeout) as e:
            raise RegistryUnavailableError(f"Registry unreachable: {e}") from e
        except DockerException as e:
            raise DeploymentError(operation="push", message=str(e)) from e

        if digest is None:
            logger.warning(f"Registry did not report a digest for {image.uri}")
        return image.model_copy(update={"digest": digest})


@dataclass
class PublishResult:
    """Outcome of the publish stage."""

    image: ImageReference
    build: BuildResult | None = None


class ImagePublisher:
    """Build and push stage: a ContainerBuilder wrapped in retry and tagging."""

    def __init__(
        self,
        builder: ContainerBuilder,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.builder = builder
        self.retry = retry or RetryPolicy()

    def _dockerfile_for(
        self, source: Path, dockerfile: str, app_name: str, port: int
    ) -> tuple[str, str | None]:
        """Return the Dockerfile to build with, generating one when missing."""
        candidate = Path(dockerfile)
        if not candidate.is_absolute():
            candidate = source / candidate
        if candidate.is_file():
            return dockerfile, None
        logger.info(f"No Dockerfile in {source}; generating a default one")
        requirements = (
            "requirements.txt" if (source / "requirements.txt").exists() else None
        )
        content = generate_dockerfile(
            app_name=app_name, port=port, requirements_file=requirements
        )
        handle = tempfile.NamedTemporaryFile(  # noqa: SIM115
            "w", suffix=".Dockerfile", delete=False, encoding="utf-8"
        )
        with handle:
            handle.write(content)
        return handle.name, handle.name

    def reference(
        self,
        source: str | Path,
        dockerfile: str,
        registry: RegistryConfig,
    ) -> ImageReference:
        return image_reference(source, dockerfile, registry)

    def build(
        self,
        source: str | Path,
        dockerfile: str,
        registry: RegistryConfig,
        platform: str = "linux/amd64",
        app_name: str | None = None,
        port: int = 5000,
    ) -> tuple[ImageReference, BuildResult]:
        """Build the image for a source tree under its computed tag."""
        source = Path(source)
        name = app_name or registry.repository.rsplit("/", 1)[-1]
        # Tag from the source tree, not from a generated Dockerfile
        image = self.reference(source, dockerfile, registry)
        dockerfile_path, generated = self._dockerfile_for(
            source, dockerfile, name, port
        )
        try:
            result = self.builder.build(
                build_context=str(source),
                image_name=image.name,
                tag=image.tag,
                labels=get_oci_labels(name, image.tag),
                dockerfile=dockerfile_path,
                platform=platform,
            )
        finally:
            if generated:
                Path(generated).unlink(missing_ok=True)
        logger.info(f"Built {image.uri} ({result.image_id[:19]})")
        return image, result

    def push(self, image: ImageReference, registry: RegistryConfig) -> ImageReference:
        """Push with retries on RegistryUnavailableError."""
        auth = resolve_registry_auth(registry)
        pushed = self.retry.call(self.builder.push, image, auth)
        logger.info(f"Pushed {pushed.pinned_uri}")
        return pushed

    def publish(
        self,
        source: str | Path,
        dockerfile: str,
        registry: RegistryConfig,
        platform: str = "linux/amd64",
        app_name: str | None = None,
        port: int = 5000,
    ) -> PublishResult:
        """Build and push the image. Every call builds fresh."""
        image, result = self.build(
            source,
            dockerfile,
            registry,
            platform=platform,
            app_name=app_name,
            port=port,
        )
        pushed = self.push(image, registry)
        return PublishResult(image=pushed, build=result)
