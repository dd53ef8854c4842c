"""Environment snapshot routes."""

from fastapi import APIRouter, Depends

from core.container import container
from models.state import EnvironmentSnapshot
from services.snapshot import SnapshotStore

router = APIRouter(prefix="/api/status", tags=["status"])


@router.get("", response_model=EnvironmentSnapshot)
async def get_status(
    store: SnapshotStore = Depends(lambda: container.snapshot_store()),
):
    """Current environment snapshot. Never triggers external commands."""
    return await store.read()


@router.post("/refresh", response_model=EnvironmentSnapshot)
async def refresh_status(
    store: SnapshotStore = Depends(lambda: container.snapshot_store()),
):
    """Re-probe cluster and repositories, then return the new snapshot."""
    return await store.refresh()
