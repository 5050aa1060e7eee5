"""Infrastructure provisioners for aksflow."""

from __future__ import annotations

import os

from aksflow.deploy.provisioners.base import BaseProvisioner
from aksflow.lib.errors import ConfigError
from aksflow.models.pipeline import PipelineConfig


def create_provisioner(config: PipelineConfig) -> BaseProvisioner:
    """Create the Azure provisioner for a pipeline configuration."""
    subscription_id = config.subscription_id or os.environ.get(
        "AZURE_SUBSCRIPTION_ID"
    )
    if not subscription_id:
        raise ConfigError(
            field="subscription_id",
            message=(
                "An Azure subscription is required. Set 'subscription_id' in "
                "pipeline.yaml or the AZURE_SUBSCRIPTION_ID environment variable."
            ),
        )
    from aksflow.deploy.provisioners.azure import AzureProvisioner

    return AzureProvisioner(subscription_id)


__all__ = ["BaseProvisioner", "create_provisioner"]
