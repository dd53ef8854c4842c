"""Environment service - the task bodies behind every mutating endpoint.

Each public method asks the coordinator to admit one operation and returns the
task handle, or None when another operation already holds the gate. Bodies
signal failure by raising; the coordinator records the error and returns the
status to idle.
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Mapping, Optional

from constants import LOG_TIMESTAMP_FORMAT, TASKRUN_ERROR, TASKRUN_FAILED, TASKRUN_TIMEOUT
from core.config import Settings
from core.errors import DaemonError, TaskRunFailedError
from core.logging import get_logger
from models.state import ExecutionResult, OperationStatus
from services.builder import ImageBuilder
from services.cluster import ClusterManager
from services.deployment import DeploymentApplier
from services.execution import ExecutionTracker
from services.operations import OperationContext, OperationCoordinator
from services.repository import RepositoryReconciler
from services.snapshot import SnapshotStore

logger = get_logger(__name__)


def log_filename(yaml_path: str, now: Optional[datetime] = None) -> str:
    """``<yaml basename without extension>_<YYYYMMDD_HHMMSS>.log``."""
    stem = Path(yaml_path).stem
    return f"{stem}_{(now or datetime.now()).strftime(LOG_TIMESTAMP_FORMAT)}.log"


class EnvironmentService:
    """Admits operations and implements what they do."""

    def __init__(
        self,
        settings: Settings,
        store: SnapshotStore,
        coordinator: OperationCoordinator,
        reconciler: RepositoryReconciler,
        cluster: ClusterManager,
        builder: ImageBuilder,
        deployer: DeploymentApplier,
        tracker: ExecutionTracker,
    ):
        self.settings = settings
        self.store = store
        self.coordinator = coordinator
        self.reconciler = reconciler
        self.cluster = cluster
        self.builder = builder
        self.deployer = deployer
        self.tracker = tracker

    # =========================================================================
    # IMAGES + MPC
    # =========================================================================

    async def rebuild(self) -> Optional[asyncio.Task]:
        return await self.coordinator.submit(
            "rebuild", OperationStatus.REBUILDING, self._build, self.settings.rebuild_timeout
        )

    async def build(self) -> Optional[asyncio.Task]:
        return await self.coordinator.submit(
            "build", OperationStatus.BUILDING, self._build, self.settings.rebuild_timeout
        )

    async def deploy(self) -> Optional[asyncio.Task]:
        return await self.coordinator.submit(
            "deploy", OperationStatus.DEPLOYING_MPC, self._deploy, self.settings.deploy_timeout
        )

    async def rebuild_and_redeploy(self) -> Optional[asyncio.Task]:
        return await self.coordinator.submit(
            "rebuild-and-redeploy",
            OperationStatus.REBUILDING_AND_REDEPLOYING,
            self._rebuild_and_redeploy,
            self.settings.rebuild_and_redeploy_timeout,
        )

    async def rebuild_on_change(self) -> bool:
        """Hot reload hook. False when another operation holds the gate."""
        return await self.rebuild() is not None

    async def _build(self, ctx: OperationContext) -> None:
        await self.builder.build()

    async def _deploy(self, ctx: OperationContext) -> None:
        await self.deployer.deploy()

    async def _rebuild_and_redeploy(self, ctx: OperationContext) -> None:
        logger.info("Rebuild-and-redeploy step 1/2: building images")
        try:
            await self.builder.build()
        except DaemonError as e:
            raise DaemonError(f"rebuild-and-redeploy failed during build: {e}") from e

        logger.info("Rebuild-and-redeploy step 2/2: deploying MPC")
        try:
            await self.deployer.deploy()
        except DaemonError as e:
            raise DaemonError(f"rebuild-and-redeploy failed during deploy: {e}") from e

    # =========================================================================
    # CLUSTER ADD-ONS
    # =========================================================================

    async def deploy_secrets(self, credentials: Optional[Mapping[str, str]] = None) -> Optional[asyncio.Task]:
        credentials = dict(credentials or {})

        async def body(ctx: OperationContext) -> None:
            await self.deployer.apply_secrets(credentials)
            await self.store.set_features(aws_enabled=True)

        return await self.coordinator.submit(
            "deploy-secrets", OperationStatus.DEPLOYING_SECRETS, body, self.settings.secrets_timeout
        )

    async def deploy_konflux(self) -> Optional[asyncio.Task]:
        return await self.coordinator.submit(
            "deploy-konflux", OperationStatus.DEPLOYING_KONFLUX,
            lambda ctx: self.deployer.apply_konflux(), self.settings.konflux_timeout,
        )

    async def deploy_minimal_stack(self) -> Optional[asyncio.Task]:
        return await self.coordinator.submit(
            "deploy-minimal-stack", OperationStatus.DEPLOYING_MINIMAL_STACK,
            lambda ctx: self.deployer.deploy_minimal_stack(), self.settings.minimal_stack_timeout,
        )

    # =========================================================================
    # CLUSTER LIFECYCLE
    # =========================================================================

    async def start_cluster(self) -> Optional[asyncio.Task]:
        async def body(ctx: OperationContext) -> None:
            try:
                await self.cluster.create()
            finally:
                await self.store.refresh()

        return await self.coordinator.submit(
            "cluster-start", OperationStatus.STARTING_CLUSTER, body, self.settings.cluster_create_timeout
        )

    async def stop_cluster(self) -> Optional[asyncio.Task]:
        async def body(ctx: OperationContext) -> None:
            try:
                await self.cluster.destroy()
            finally:
                await self.store.refresh()

        return await self.coordinator.submit(
            "cluster-stop", OperationStatus.STOPPING_CLUSTER, body, self.settings.cluster_destroy_timeout
        )

    # =========================================================================
    # TASKRUNS
    # =========================================================================

    async def run_taskrun(self, yaml_path: str) -> Optional[asyncio.Task]:
        async def body(ctx: OperationContext) -> None:
            await self._run_taskrun(ctx, yaml_path)

        return await self.coordinator.submit(
            "taskrun", OperationStatus.RUNNING_TASKRUN, body, self.settings.taskrun_timeout
        )

    async def _run_taskrun(self, ctx: OperationContext, yaml_path: str) -> None:
        await self.store.set_execution_result(None)

        logs_dir = Path(self.settings.logs_dir)
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            await self.store.set_execution_result(ExecutionResult(status=TASKRUN_ERROR))
            raise DaemonError(f"failed to create logs directory: {e}") from e

        log_path = str(logs_dir / log_filename(yaml_path))
        started = datetime.now().astimezone().isoformat(timespec="seconds")

        logger.info("Starting TaskRun workflow", yaml_path=yaml_path, log_file=log_path)
        name, status, error = await self.tracker.run_workflow(yaml_path, log_path, deadline=ctx.deadline)
        if not status:
            await self.store.set_execution_result(ExecutionResult(status=TASKRUN_ERROR))
            raise DaemonError(f"TaskRun workflow failed: {error}")

        await self.store.set_execution_result(
            ExecutionResult(name=name, status=status, log_file=log_path, start_time=started)
        )
        logger.info("TaskRun workflow completed", taskrun=name, status=status, log_file=log_path)

        if status in (TASKRUN_FAILED, TASKRUN_TIMEOUT):
            raise TaskRunFailedError(name, status, log_path)

    # =========================================================================
    # GIT (ungated)
    # =========================================================================

    def sync_repositories(self) -> asyncio.Task:
        """Fire-and-forget sync of every tracked repository, then refresh their facts."""

        async def body() -> None:
            error: Optional[DaemonError] = None
            try:
                await self.reconciler.sync_all(self.store.repositories)
            except DaemonError as e:
                error = e
            await self.store.refresh_repositories()
            if error is not None:
                raise error

        return self.coordinator.spawn_detached("git-sync", body, self.settings.git_sync_timeout)
