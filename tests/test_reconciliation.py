"""Tests for the periodic reconciliation sweeper."""

import asyncio

from core.errors import DaemonError
from services.reconciliation import ReconciliationSweeper


async def test_first_sweep_syncs_then_refreshes(store, reconciler):
    sweeper = ReconciliationSweeper(store, reconciler, refresh_interval=60, sync_interval=3600)

    await sweeper.sweep_once()

    assert reconciler.synced == ["/src/multi-platform-controller"]
    snapshot = await store.read()
    assert snapshot.cluster.status == "running"
    assert "multi-platform-controller" in snapshot.repositories


async def test_sync_not_repeated_before_interval(store, reconciler):
    sweeper = ReconciliationSweeper(store, reconciler, refresh_interval=60, sync_interval=3600)

    await sweeper.sweep_once()
    await sweeper.sweep_once()

    assert len(reconciler.synced) == 1


async def test_sync_disabled(store, reconciler):
    sweeper = ReconciliationSweeper(store, reconciler, sync_enabled=False)
    await sweeper.sweep_once()
    assert reconciler.synced == []


async def test_sync_failure_does_not_stop_refresh(store, reconciler):
    reconciler.sync_error = DaemonError("failed to sync repositories: mpc: fetch failed")
    sweeper = ReconciliationSweeper(store, reconciler)

    await sweeper.sweep_once()

    assert (await store.read()).cluster.status == "running"


async def test_loop_lifecycle(store, reconciler, cluster):
    sweeper = ReconciliationSweeper(store, reconciler, refresh_interval=0.01, sync_enabled=False)

    await sweeper.start()
    assert sweeper.running
    await asyncio.sleep(0.05)
    await sweeper.stop()

    assert not sweeper.running
    assert cluster.calls >= 2
