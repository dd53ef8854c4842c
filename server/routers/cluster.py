"""kind cluster lifecycle routes."""

import asyncio

from fastapi import APIRouter, Depends

from core.config import Settings
from core.container import container
from core.errors import DaemonError
from core.logging import get_logger
from models.api import ClusterStatusResponse
from routers.operations import ADMISSION_RESPONSES, admission_response
from services.cluster import ClusterManager
from services.environment import EnvironmentService
from services.snapshot import SnapshotStore

logger = get_logger(__name__)
router = APIRouter(prefix="/api/cluster", tags=["cluster"])


@router.get("/status", response_model=ClusterStatusResponse)
async def cluster_status(
    cluster: ClusterManager = Depends(lambda: container.cluster_manager()),
    settings: Settings = Depends(lambda: container.settings()),
):
    """Live probe of the kind cluster, bypassing the snapshot."""
    try:
        current = await asyncio.wait_for(cluster.status(), timeout=settings.cluster_status_timeout)
    except asyncio.TimeoutError:
        return ClusterStatusResponse(status="error", error="cluster status check timed out")
    except (DaemonError, OSError) as e:
        logger.warning("Cluster status check failed", error=str(e))
        return ClusterStatusResponse(status="error", error=str(e))
    return ClusterStatusResponse(status=current)


@router.post("/start", status_code=202, responses=ADMISSION_RESPONSES)
async def start_cluster(
    environment: EnvironmentService = Depends(lambda: container.environment()),
    store: SnapshotStore = Depends(lambda: container.snapshot_store()),
):
    task = await environment.start_cluster()
    return await admission_response(
        task, "Cluster creation initiated. Check daemon logs for progress.", store
    )


@router.post("/stop", status_code=202, responses=ADMISSION_RESPONSES)
async def stop_cluster(
    environment: EnvironmentService = Depends(lambda: container.environment()),
    store: SnapshotStore = Depends(lambda: container.snapshot_store()),
):
    task = await environment.stop_cluster()
    return await admission_response(
        task, "Cluster deletion initiated. Check daemon logs for progress.", store
    )
