"""Default configuration values for aksflow."""

# Environment variables overriding pipeline.yaml values (dotted config paths)
ENV_VAR_MAP: dict[str, str] = {
    "release.timeout_seconds": "AKSFLOW_ROLLOUT_TIMEOUT",
    "release.poll_interval": "AKSFLOW_POLL_INTERVAL",
    "release.replicas": "AKSFLOW_REPLICAS",
    "state.lock_attempts": "AKSFLOW_LOCK_ATTEMPTS",
    "state.path": "AKSFLOW_STATE_DIR",
    "registry.custom_tag": "AKSFLOW_IMAGE_TAG",
}

DEFAULT_STATE_DIR = ".aksflow"
RELEASES_FILENAME = "releases.json"
DEFAULT_CONFIG_FILENAMES = ("pipeline.yaml", "pipeline.yml")

# Container waiting reasons that mean the release is actively broken
FAILED_WAITING_REASONS = frozenset(
    {
        "CrashLoopBackOff",
        "ImagePullBackOff",
        "ErrImagePull",
        "CreateContainerConfigError",
        "CreateContainerError",
        "InvalidImageName",
        "RunContainerError",
    }
)

# Azure error codes that indicate an exhausted quota rather than a transient fault
AZURE_QUOTA_ERROR_CODES = frozenset(
    {
        "QuotaExceeded",
        "OperationNotAllowed",
        "SkuNotAvailable",
        "InsufficientSubscriptionQuota",
    }
)

# HTTP status codes treated as transient on Azure and Kubernetes APIs
TRANSIENT_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504})
