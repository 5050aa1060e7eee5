"""Dockerfile generation for applications that do not ship one.

The default image targets a Python web application served by gunicorn,
listening on the release's container port.
"""

from datetime import datetime, timezone

from jinja2 import Template

# Jinja2 template for generating Dockerfiles
DEFAULT_DOCKERFILE_TEMPLATE = """\
# Auto-generated Dockerfile for {{ app_name }}
# Generated at: {{ created }}

FROM {{ base_image }}

LABEL org.opencontainers.image.title="{{ app_name }}"
LABEL org.opencontainers.image.version="{{ version }}"
LABEL org.opencontainers.image.created="{{ created }}"
LABEL io.aksflow.managed="true"

ENV PYTHONDONTWRITEBYTECODE=1 \\
    PYTHONUNBUFFERED=1

WORKDIR /app

{% if requirements_file %}
COPY {{ requirements_file }} /app/{{ requirements_file }}
RUN pip install --no-cache-dir -r /app/{{ requirements_file }}
{% endif %}

COPY . /app

{% for key, value in environment.items() %}
ENV {{ key }}="{{ value }}"
{% endfor %}

EXPOSE {{ port }}

RUN useradd --create-home --uid 10001 app
USER app

CMD {{ command | tojson }}
"""


def generate_dockerfile(
    app_name: str,
    port: int,
    *,
    base_image: str = "python:3.12-slim",
    version: str = "0.0.0",
    requirements_file: str | None = "requirements.txt",
    command: list[str] | None = None,
    environment: dict[str, str] | None = None,
) -> str:
    """Generate a Dockerfile for a Python web application.

    Args:
        app_name: Application name for labeling
        port: Port the application listens on
        base_image: Base Docker image to use
        version: Version for the OCI label
        requirements_file: Requirements file to install, if any
        command: Container command (gunicorn serving ``app:app`` by default)
        environment: Environment variables to set

    Returns:
        Generated Dockerfile content as a string

    Example:
        >>> dockerfile = generate_dockerfile(app_name="web", port=5000)
        >>> "EXPOSE 5000" in dockerfile
        True
    """
    template = Template(DEFAULT_DOCKERFILE_TEMPLATE)

    created = datetime.now(timezone.utc).isoformat()

    return template.render(
        app_name=app_name,
        port=port,
        base_image=base_image,
        version=version,
        created=created,
        requirements_file=requirements_file,
        command=command or ["gunicorn", "--bind", f"0.0.0.0:{port}", "app:app"],
        environment=environment or {},
    )
