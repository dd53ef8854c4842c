"""Reconciliation sweeper - keeps the snapshot and the tracked checkouts current.

Runs as a background task that:
- Syncs every tracked repository with upstream on startup
- Refreshes cluster and repository facts every ``refresh_interval`` seconds
- Re-syncs repositories every ``sync_interval`` seconds
"""

import asyncio
from typing import Optional

from core.errors import DaemonError
from core.logging import get_logger
from services.repository import RepositoryReconciler
from services.snapshot import SnapshotStore

logger = get_logger(__name__)


class ReconciliationSweeper:
    """Periodic refresh + upstream sync loop."""

    def __init__(
        self,
        store: SnapshotStore,
        reconciler: RepositoryReconciler,
        refresh_interval: float = 30.0,
        sync_interval: float = 3600.0,
        sync_enabled: bool = True,
    ):
        self.store = store
        self.reconciler = reconciler
        self.refresh_interval = refresh_interval
        self.sync_interval = sync_interval
        self.sync_enabled = sync_enabled
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._last_sync: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweeper background task."""
        if self._running:
            logger.warning("Reconciliation sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop(), name="reconciliation-sweeper")
        logger.info("Reconciliation sweeper started",
                    refresh_interval=self.refresh_interval,
                    sync_interval=self.sync_interval if self.sync_enabled else None)

    async def stop(self) -> None:
        """Stop the sweeper."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Reconciliation sweeper stopped")

    async def _sweep_loop(self) -> None:
        """Main loop - first iteration performs the initial sync."""
        while self._running:
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error("Reconciliation iteration failed", error=str(e))

            await asyncio.sleep(self.refresh_interval)

    async def sweep_once(self) -> None:
        """Single iteration: sync when due, then refresh the snapshot."""
        if self.sync_enabled and self._sync_due():
            await self.sync_repositories()
        await self.store.refresh()

    def _sync_due(self) -> bool:
        if self._last_sync is None:
            return True
        return asyncio.get_running_loop().time() - self._last_sync >= self.sync_interval

    async def sync_repositories(self) -> None:
        repositories = self.store.repositories
        if not repositories:
            return

        logger.info("Running periodic upstream sync", repositories=list(repositories))
        self._last_sync = asyncio.get_running_loop().time()
        try:
            await self.reconciler.sync_all(repositories)
        except DaemonError as e:
            # Per-repository failures are already logged by the reconciler
            logger.warning("Periodic upstream sync incomplete", error=str(e))
