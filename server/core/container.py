"""Dependency injection container for the daemon."""

from dependency_injector import containers, providers

from core.config import Settings
from services.builder import ImageBuilder
from services.cluster import ClusterManager
from services.deployment import DeploymentApplier
from services.environment import EnvironmentService
from services.execution import ExecutionTracker, KubectlJobEngine
from services.kubectl import Kubectl
from services.operations import OperationCoordinator
from services.reconciliation import ReconciliationSweeper
from services.repository import RepositoryReconciler
from services.snapshot import SnapshotStore
from services.watcher import HotReloadWatcher


def _kubeconfig(settings: Settings) -> str:
    return str(settings.kubeconfig_path) if settings.kubeconfig_path.exists() else ""


class Container(containers.DeclarativeContainer):
    """Daemon dependency injection container.

    Everything is a singleton: the snapshot and the admission gate are process
    state and must be shared by every request.
    """

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # External collaborators
    kubectl = providers.Singleton(
        Kubectl,
        kubeconfig=providers.Callable(_kubeconfig, settings),
    )

    cluster_manager = providers.Singleton(
        ClusterManager,
        name=settings.provided.cluster_name,
        provider=settings.provided.kind_provider,
    )

    reconciler = providers.Singleton(
        RepositoryReconciler,
        remote=settings.provided.upstream_remote,
        upstream_branch=settings.provided.upstream_branch,
    )

    image_builder = providers.Singleton(
        ImageBuilder,
        repo_path=settings.provided.mpc_repo_path,
        cluster_name=settings.provided.cluster_name,
        container_cli=settings.provided.container_cli,
    )

    deployment_applier = providers.Singleton(
        DeploymentApplier,
        kubectl=kubectl,
        repo_path=settings.provided.mpc_repo_path,
        temp_dir=settings.provided.temp_dir,
        konflux_ci_path=settings.provided.konflux_ci_path,
        namespace=settings.provided.mpc_namespace,
    )

    job_engine = providers.Singleton(
        KubectlJobEngine,
        kubectl=kubectl,
        namespace=settings.provided.mpc_namespace,
    )

    # Core
    snapshot_store = providers.Singleton(
        SnapshotStore,
        cluster=cluster_manager,
        reconciler=reconciler,
        repositories=settings.provided.repositories,
        cluster_name=settings.provided.cluster_name,
        kubeconfig_path=providers.Callable(str, settings.provided.kubeconfig_path),
        cluster_status_timeout=settings.provided.cluster_status_timeout,
    )

    coordinator = providers.Singleton(
        OperationCoordinator,
        store=snapshot_store,
    )

    execution_tracker = providers.Singleton(
        ExecutionTracker,
        engine=job_engine,
        worker_poll_interval=settings.provided.worker_poll_interval,
        worker_wait_timeout=settings.provided.worker_wait_timeout,
        monitor_poll_interval=settings.provided.monitor_poll_interval,
        monitor_timeout=settings.provided.monitor_timeout,
        flush_grace=settings.provided.log_flush_grace,
    )

    environment = providers.Singleton(
        EnvironmentService,
        settings=settings,
        store=snapshot_store,
        coordinator=coordinator,
        reconciler=reconciler,
        cluster=cluster_manager,
        builder=image_builder,
        deployer=deployment_applier,
        tracker=execution_tracker,
    )

    # Background services
    sweeper = providers.Singleton(
        ReconciliationSweeper,
        store=snapshot_store,
        reconciler=reconciler,
        refresh_interval=settings.provided.state_refresh_interval,
        sync_interval=settings.provided.git_sync_interval,
        sync_enabled=settings.provided.git_sync_enabled,
    )

    hot_reload_watcher = providers.Singleton(
        HotReloadWatcher,
        root=settings.provided.mpc_repo_path,
        on_change=environment.provided.rebuild_on_change,
        debounce=settings.provided.hot_reload_debounce,
    )


# Global container instance
container = Container()
