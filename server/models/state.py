"""Pydantic models for the development environment snapshot.

EnvironmentSnapshot is the root object returned by GET /api/status. The shell
workflow polls it to follow operation progress, so field names are part of the
public contract.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field

from constants import CLUSTER_UNKNOWN


class OperationStatus(str, Enum):
    """Background operation currently holding the admission gate.

    Anything other than IDLE means exactly one task is admitted.
    """
    IDLE = "idle"
    REBUILDING = "rebuilding"
    BUILDING = "building"
    DEPLOYING_MPC = "deploying_mpc"
    DEPLOYING_SECRETS = "deploying_secrets"
    DEPLOYING_KONFLUX = "deploying_konflux"
    DEPLOYING_MINIMAL_STACK = "deploying_minimal_stack"
    REBUILDING_AND_REDEPLOYING = "rebuilding_and_redeploying"
    RUNNING_TASKRUN = "running_taskrun"
    STARTING_CLUSTER = "starting_cluster"
    STOPPING_CLUSTER = "stopping_cluster"


class ClusterFacts(BaseModel):
    """State of the kind cluster as last observed by a refresh."""
    name: str = ""
    status: str = CLUSTER_UNKNOWN  # running | not_running | initializing | unknown
    kubeconfig_path: str = ""
    konflux_deployed: bool = False
    created_at: Optional[datetime] = None


class RepositoryFacts(BaseModel):
    """Local checkout state relative to the last fetched upstream."""
    name: str
    path: str
    current_branch: str
    last_synced: Optional[datetime] = None
    commits_behind_upstream: int = 0
    has_local_changes: bool = False


class DeploymentFacts(BaseModel):
    """Images running in the cluster and the revision they were built from."""
    controller_image: str = ""
    otp_image: str = ""
    deployed_at: Optional[datetime] = None
    source_git_hash: str = ""


class FeatureFlags(BaseModel):
    """Cloud provider integrations enabled in the cluster."""
    aws_enabled: bool = False
    ibm_enabled: bool = False


class ExecutionResult(BaseModel):
    """Outcome of the most recent TaskRun workflow."""
    name: str = ""
    status: str = ""  # Succeeded | Failed | Timeout | Error
    log_file: str = ""
    start_time: str = ""


class EnvironmentSnapshot(BaseModel):
    """Point-in-time view of the whole development environment."""
    session_id: str
    created_at: datetime
    last_active: datetime
    cluster: ClusterFacts = Field(default_factory=ClusterFacts)
    repositories: Dict[str, RepositoryFacts] = Field(default_factory=dict)
    mpc_deployment: Optional[DeploymentFacts] = None
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    operation_status: OperationStatus = OperationStatus.IDLE
    last_operation_error: str = ""
    taskrun_info: Optional[ExecutionResult] = None
