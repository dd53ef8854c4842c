"""Environment-driven configuration with Pydantic v2."""

from typing import Dict, Literal, Optional
from pathlib import Path
from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from constants import DEFAULT_CLUSTER_NAME, MPC_NAMESPACE, MPC_REPOSITORY_NAME


class Settings(BaseSettings):
    """Daemon settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="localhost")
    port: int = Field(default=8765, ge=1024, le=65535)
    debug: bool = Field(default=False)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")
    log_file: Optional[str] = Field(default=None)

    # Paths
    mpc_dev_env_path: Path = Field(default_factory=Path.cwd)
    mpc_repo_path: Optional[Path] = Field(default=None)
    kubeconfig_path: Path = Field(default_factory=lambda: Path.home() / ".kube" / "config")
    logs_dir: Optional[Path] = Field(default=None)

    # Cluster
    cluster_name: str = Field(default=DEFAULT_CLUSTER_NAME)
    kind_provider: Optional[str] = Field(default="podman")
    container_cli: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("container_cli", "docker_cli")
    )  # auto-detect podman/docker when unset
    mpc_namespace: str = Field(default=MPC_NAMESPACE)

    # Git reconciliation
    upstream_remote: str = Field(default="upstream")
    upstream_branch: str = Field(default="main")
    git_sync_enabled: bool = Field(default=True)
    git_sync_interval: int = Field(default=3600, ge=60)  # 60 minutes
    state_refresh_interval: float = Field(default=30.0, ge=1)

    # Execution tracker (seconds)
    worker_poll_interval: float = Field(default=2.0, gt=0, le=60)
    worker_wait_timeout: float = Field(default=300.0, gt=0)
    monitor_poll_interval: float = Field(default=5.0, gt=0, le=300)
    monitor_timeout: float = Field(default=1800.0, gt=0)
    log_flush_grace: float = Field(default=2.0, ge=0, le=60)

    # Operation timeouts (seconds)
    cluster_status_timeout: float = Field(default=10.0, gt=0)
    cluster_create_timeout: float = Field(default=600.0, gt=0)
    cluster_destroy_timeout: float = Field(default=300.0, gt=0)
    rebuild_timeout: float = Field(default=900.0, gt=0)
    deploy_timeout: float = Field(default=900.0, gt=0)
    rebuild_and_redeploy_timeout: float = Field(default=1800.0, gt=0)
    secrets_timeout: float = Field(default=300.0, gt=0)
    konflux_timeout: float = Field(default=1800.0, gt=0)
    minimal_stack_timeout: float = Field(default=600.0, gt=0)
    taskrun_timeout: float = Field(default=2100.0, gt=0)  # monitor window + worker wait
    git_sync_timeout: float = Field(default=300.0, gt=0)

    # Hot reload
    hot_reload_enabled: bool = Field(default=False)
    hot_reload_debounce: float = Field(default=2.0, ge=0.1, le=60)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unsupported log level: {v}")
        return level

    @model_validator(mode="after")
    def detect_paths(self):
        """Auto-detect the MPC repository as a sibling of the dev-env checkout."""
        if self.mpc_repo_path is None:
            candidate = self.mpc_dev_env_path.parent / MPC_REPOSITORY_NAME
            if candidate.is_dir():
                self.mpc_repo_path = candidate
        if self.logs_dir is None:
            self.logs_dir = self.mpc_dev_env_path / "logs"
        return self

    @property
    def konflux_ci_path(self) -> Path:
        """konflux-ci checkout, expected next to the dev-env checkout."""
        return self.mpc_dev_env_path.parent / "konflux-ci"

    @property
    def temp_dir(self) -> Path:
        """Scratch space for generated manifests (host-config.yaml)."""
        return self.mpc_dev_env_path / "temp"

    @property
    def repositories(self) -> Dict[str, str]:
        """Tracked repositories by name."""
        if self.mpc_repo_path is None:
            return {}
        return {MPC_REPOSITORY_NAME: str(self.mpc_repo_path)}

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
