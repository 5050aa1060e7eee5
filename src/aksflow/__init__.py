"""aksflow - Provision AKS clusters and roll out container releases from YAML.

aksflow drives one pipeline from a single ``pipeline.yaml``:

- Plan and apply cluster infrastructure against lease-locked remote state
- Build and push content-addressed container images
- Roll out a release and watch it to Succeeded, Failed or TimedOut
"""

from aksflow.config.loader import ConfigLoader
from aksflow.lib.errors import AksFlowError, ConfigError, ValidationError

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AksFlowError",
    "ConfigLoader",
    "ConfigError",
    "ValidationError",
]
