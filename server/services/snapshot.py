"""Environment Snapshot Store - the daemon's single piece of shared state.

Every HTTP response reads from here; the reconciliation sweeper, the manual
refresh endpoint and background operations write to it. Reads return deep
copies so callers never share references with the live snapshot. Writers
compute new facts first (cluster and git probes are slow external calls) and
only take the write lock to swap the finished sub-records in.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Dict, Optional, Protocol, Union

from constants import CLUSTER_RUNNING, CLUSTER_UNKNOWN
from core.logging import get_logger
from core.rwlock import ReadWriteLock
from models.state import (
    ClusterFacts,
    DeploymentFacts,
    EnvironmentSnapshot,
    ExecutionResult,
    FeatureFlags,
    OperationStatus,
    RepositoryFacts,
)

logger = get_logger(__name__)


class ClusterProbe(Protocol):
    """Anything that can report the kind cluster status."""

    async def status(self) -> str:
        ...


class RepoReconciler(Protocol):
    """Git operations the store and the sync endpoint rely on."""

    async def check_state(self, repo_path: str) -> RepositoryFacts:
        ...

    async def sync(self, repo_path: str) -> None:
        ...


class SnapshotStore:
    """In-memory EnvironmentSnapshot guarded by a reader/writer lock."""

    def __init__(
        self,
        cluster: ClusterProbe,
        reconciler: RepoReconciler,
        repositories: Optional[Dict[str, str]] = None,
        cluster_name: str = "",
        kubeconfig_path: str = "",
        cluster_status_timeout: float = 10.0,
    ):
        self._cluster = cluster
        self._reconciler = reconciler
        self._repositories = dict(repositories or {})
        self._cluster_name = cluster_name
        self._kubeconfig_path = kubeconfig_path
        self._cluster_status_timeout = cluster_status_timeout
        self._lock = ReadWriteLock()

        now = datetime.now()
        self._state = EnvironmentSnapshot(
            session_id=str(uuid.uuid4()),
            created_at=now,
            last_active=now,
            cluster=ClusterFacts(name=cluster_name, kubeconfig_path=kubeconfig_path),
        )

    @property
    def repositories(self) -> Dict[str, str]:
        """Configured repositories (name -> path)."""
        return dict(self._repositories)

    # =========================================================================
    # READS
    # =========================================================================

    async def read(self) -> EnvironmentSnapshot:
        """Return an independent copy of the current snapshot."""
        async with self._lock.read():
            return self._state.model_copy(deep=True)

    # =========================================================================
    # REFRESH (cluster + repository facts)
    # =========================================================================

    async def initial_scan(self) -> EnvironmentSnapshot:
        """Populate the snapshot from scratch on daemon startup."""
        logger.info("Performing initial environment scan", repositories=list(self._repositories))
        snapshot = await self.refresh()
        logger.info("Initial scan complete",
                    session_id=snapshot.session_id,
                    cluster_status=snapshot.cluster.status,
                    repositories=list(snapshot.repositories))
        return snapshot

    async def refresh(self) -> EnvironmentSnapshot:
        """Re-query cluster and repository facts and swap them in.

        A failing repository check drops that repository from the mapping; a
        failing cluster check marks the cluster ``unknown``. Either way the rest
        of the snapshot is still updated.
        """
        async with self._lock.read():
            previous_cluster = self._state.cluster.model_copy()

        cluster, repositories = await asyncio.gather(
            self._probe_cluster(previous_cluster),
            self._probe_repositories(),
        )
        deployment = await self._probe_deployment()

        async with self._lock.write():
            self._state.cluster = cluster
            self._state.repositories = repositories
            self._state.mpc_deployment = deployment
            self._state.last_active = datetime.now()
            return self._state.model_copy(deep=True)

    async def refresh_repositories(self) -> Dict[str, RepositoryFacts]:
        """Refresh only repository facts (after a git sync)."""
        repositories = await self._probe_repositories()
        async with self._lock.write():
            self._state.repositories = repositories
            self._state.last_active = datetime.now()
        return {name: facts.model_copy() for name, facts in repositories.items()}

    async def _probe_cluster(self, previous: ClusterFacts) -> ClusterFacts:
        try:
            status = await asyncio.wait_for(self._cluster.status(), timeout=self._cluster_status_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Cluster status check failed", error=str(e))
            return ClusterFacts(
                name=self._cluster_name,
                status=CLUSTER_UNKNOWN,
                kubeconfig_path=self._kubeconfig_path,
            )

        created_at = None
        if status == CLUSTER_RUNNING:
            created_at = previous.created_at if previous.status == CLUSTER_RUNNING else datetime.now()

        return ClusterFacts(
            name=self._cluster_name,
            status=status,
            kubeconfig_path=self._kubeconfig_path,
            konflux_deployed=previous.konflux_deployed,
            created_at=created_at,
        )

    async def _probe_repositories(self) -> Dict[str, RepositoryFacts]:
        names = list(self._repositories)
        results = await asyncio.gather(
            *(self._reconciler.check_state(self._repositories[name]) for name in names),
            return_exceptions=True,
        )

        now = datetime.now()
        repositories: Dict[str, RepositoryFacts] = {}
        for name, result in zip(names, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                # Absence means "unknown", never "clean"
                logger.warning("Repository check failed", repository=name, error=str(result))
                continue
            repositories[name] = result.model_copy(update={"name": name, "last_synced": now})
        return repositories

    async def _probe_deployment(self) -> Optional[DeploymentFacts]:
        # No live producer yet: deployment facts stay absent
        return None

    # =========================================================================
    # SINGLE-FIELD UPDATES (background operations)
    # =========================================================================

    async def set_operation_status(
        self,
        status: OperationStatus,
        error: Union[BaseException, str, None] = None,
    ) -> None:
        """Record operation progress; a falsy error clears the last error."""
        async with self._lock.write():
            self._state.operation_status = OperationStatus(status)
            self._state.last_operation_error = str(error) if error else ""
            self._state.last_active = datetime.now()

    async def set_execution_result(self, result: Optional[ExecutionResult]) -> None:
        """Replace (or clear, with None) the last TaskRun result."""
        async with self._lock.write():
            self._state.taskrun_info = result.model_copy() if result is not None else None
            self._state.last_active = datetime.now()

    async def set_features(self, **flags: bool) -> FeatureFlags:
        """Replace the feature flags record with the given flags applied."""
        async with self._lock.write():
            self._state.features = self._state.features.model_copy(update=flags)
            self._state.last_active = datetime.now()
            return self._state.features.model_copy()
