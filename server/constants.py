"""Centralized constants for the MPC dev environment daemon.

Single source of truth for cluster names, namespaces, image tags and the
status vocabulary shared by the snapshot store, the HTTP layer and the
execution tracker.
"""

from typing import FrozenSet, Tuple

# =============================================================================
# CLUSTER
# =============================================================================

DEFAULT_CLUSTER_NAME = "konflux"

CLUSTER_RUNNING = "running"
CLUSTER_NOT_RUNNING = "not_running"
CLUSTER_INITIALIZING = "initializing"
CLUSTER_UNKNOWN = "unknown"

# =============================================================================
# MPC DEPLOYMENT
# =============================================================================

MPC_NAMESPACE = "multi-platform-controller"
MPC_DEPLOYMENT_NAME = "multi-platform-controller"
OTP_DEPLOYMENT_NAME = "multi-platform-otp-server"

MPC_REPOSITORY_NAME = "multi-platform-controller"

# (dockerfile, tag) pairs built by a rebuild, in build order
MPC_IMAGES: Tuple[Tuple[str, str], ...] = (
    ("Dockerfile", "multi-platform-controller:latest"),
    ("Dockerfile.otp", "multi-platform-otp:latest"),
)

# Locally built images are referenced with the podman "localhost/" prefix
LOCAL_IMAGE_PREFIX = "localhost/"

AWS_SECRET_NAMES: Tuple[str, ...] = ("aws-account", "aws-ssh-key")

KONFLUX_SCRIPTS: Tuple[str, ...] = (
    "deploy-deps.sh",
    "deploy-konflux.sh",
    "deploy-test-resources.sh",
)

TEKTON_RELEASE_URL = "https://storage.googleapis.com/tekton-releases/pipeline/latest/release.yaml"
CERT_MANAGER_RELEASE_URL = "https://github.com/cert-manager/cert-manager/releases/download/v1.16.2/cert-manager.yaml"

# =============================================================================
# TASKRUNS
# =============================================================================

TASKRUN_KIND = "TaskRun"
TEKTON_API_GROUP = "tekton.dev"
TASKRUN_POD_LABEL = "tekton.dev/taskRun"

TASKRUN_SUCCEEDED = "Succeeded"
TASKRUN_FAILED = "Failed"
TASKRUN_TIMEOUT = "Timeout"
# Workflow never reached the cluster (bad TaskRun file, unwritable logs dir)
TASKRUN_ERROR = "Error"

POD_PHASE_RUNNING = "Running"

# Log sink file name: <job-basename>_<YYYYMMDD_HHMMSS>.log
LOG_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# =============================================================================
# HOT RELOAD
# =============================================================================

HOT_RELOAD_IGNORED_DIRS: FrozenSet[str] = frozenset([
    ".git",
    "__pycache__",
    ".pytest_cache",
    "node_modules",
    ".vscode",
    ".idea",
])

HOT_RELOAD_IGNORED_EXTENSIONS: FrozenSet[str] = frozenset([
    ".swp",
    ".swo",
    ".pyc",
    ".pyo",
    ".log",
    ".tmp",
])
