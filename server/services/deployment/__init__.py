"""Deployment module - MPC stack, secrets and Konflux onto the kind cluster."""

from .host_config import build_host_config, ensure_host_config
from .minimal import MinimalStackDeployer
from .manager import DeploymentApplier, DeploymentError

__all__ = [
    "build_host_config",
    "ensure_host_config",
    "MinimalStackDeployer",
    "DeploymentApplier",
    "DeploymentError",
]
