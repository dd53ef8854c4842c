"""kind cluster lifecycle: create, destroy and status."""

from typing import Dict, Optional

from constants import CLUSTER_INITIALIZING, CLUSTER_NOT_RUNNING, CLUSTER_RUNNING, DEFAULT_CLUSTER_NAME
from core.errors import CommandError
from core.logging import get_logger
from core.process import run_command

logger = get_logger(__name__)


class ClusterManager:
    """Wraps the kind CLI for a single named cluster."""

    def __init__(
        self,
        name: str = DEFAULT_CLUSTER_NAME,
        provider: Optional[str] = "podman",
        kind_config: Optional[str] = None,
        command_timeout: float = 30.0,
    ):
        self.name = name
        self.provider = provider
        self.kind_config = kind_config
        self.command_timeout = command_timeout

    @property
    def context(self) -> str:
        """kubectl context kind writes for the cluster."""
        return f"kind-{self.name}"

    def _env(self) -> Dict[str, str]:
        return {"KIND_EXPERIMENTAL_PROVIDER": self.provider} if self.provider else {}

    async def status(self) -> str:
        """Return running, not_running or initializing.

        Raises:
            CommandError: kind itself failed (the caller reports ``unknown``)
        """
        result = await run_command(
            ["kind", "get", "clusters"], env=self._env(), timeout=self.command_timeout
        )
        clusters = {line.strip() for line in result.stdout.splitlines() if line.strip()}
        if self.name not in clusters:
            return CLUSTER_NOT_RUNNING

        # Listed by kind, but only "running" once the API server answers
        info = await run_command(
            ["kubectl", "cluster-info", "--context", self.context],
            check=False,
            timeout=self.command_timeout,
        )
        if not info.ok:
            logger.debug("Cluster exists but is not reachable yet", cluster=self.name)
            return CLUSTER_INITIALIZING
        return CLUSTER_RUNNING

    async def create(self) -> None:
        argv = ["kind", "create", "cluster", "--name", self.name]
        if self.kind_config:
            argv += ["--config", self.kind_config]

        logger.info("Creating kind cluster", cluster=self.name, provider=self.provider)
        await run_command(argv, env=self._env(), log_prefix="KIND")
        logger.info("Kind cluster created", cluster=self.name)

    async def destroy(self) -> None:
        """Delete the cluster; a cluster that does not exist is not an error."""
        logger.info("Destroying kind cluster", cluster=self.name)
        try:
            await run_command(["kind", "delete", "cluster", "--name", self.name], env=self._env())
        except CommandError as e:
            if "not found" in e.stderr or "No kind clusters found" in e.stderr:
                logger.info("Cluster does not exist, nothing to delete", cluster=self.name)
                return
            raise
        logger.info("Kind cluster destroyed", cluster=self.name)
