"""Admitted background operations: image builds and deployments.

Every endpoint answers 202 once the operation is admitted, or 409 when another
operation holds the gate. Progress is followed through GET /api/status.
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import ORJSONResponse

from core.container import container
from core.logging import get_logger
from models.api import AcceptedResponse, ConflictResponse, SecretsRequest
from models.state import OperationStatus
from services.environment import EnvironmentService
from services.snapshot import SnapshotStore

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["operations"])

ADMISSION_RESPONSES = {
    status.HTTP_202_ACCEPTED: {"model": AcceptedResponse},
    status.HTTP_409_CONFLICT: {"model": ConflictResponse},
}


async def admission_response(
    task: Optional[asyncio.Task],
    message: str,
    store: SnapshotStore,
) -> ORJSONResponse:
    """202 for an admitted task, 409 naming the operation in flight otherwise."""
    if task is not None:
        return ORJSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=AcceptedResponse(message=message).model_dump(),
        )

    current = (await store.read()).operation_status
    if current == OperationStatus.IDLE:
        error = "Another operation is already in progress"
    else:
        error = f"Operation '{current.value}' is already in progress"
    return ORJSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=ConflictResponse(error=error).model_dump(),
    )


@router.post("/rebuild", status_code=202, responses=ADMISSION_RESPONSES)
async def rebuild(
    environment: EnvironmentService = Depends(lambda: container.environment()),
    store: SnapshotStore = Depends(lambda: container.snapshot_store()),
):
    """Rebuild the controller and OTP images and load them into kind."""
    task = await environment.rebuild()
    return await admission_response(
        task, "MPC image rebuild initiated. Check daemon logs for build progress.", store
    )


@router.post("/mpc/build", status_code=202, responses=ADMISSION_RESPONSES)
async def build(
    environment: EnvironmentService = Depends(lambda: container.environment()),
    store: SnapshotStore = Depends(lambda: container.snapshot_store()),
):
    task = await environment.build()
    return await admission_response(
        task, "MPC image build initiated. Check daemon logs for build progress.", store
    )


@router.post("/mpc/deploy", status_code=202, responses=ADMISSION_RESPONSES)
async def deploy(
    environment: EnvironmentService = Depends(lambda: container.environment()),
    store: SnapshotStore = Depends(lambda: container.snapshot_store()),
):
    task = await environment.deploy()
    return await admission_response(
        task, "MPC deployment initiated. Check daemon logs for deployment progress.", store
    )


@router.post("/mpc/rebuild-and-redeploy", status_code=202, responses=ADMISSION_RESPONSES)
async def rebuild_and_redeploy(
    environment: EnvironmentService = Depends(lambda: container.environment()),
    store: SnapshotStore = Depends(lambda: container.snapshot_store()),
):
    """Build both images, then deploy them, as one operation."""
    task = await environment.rebuild_and_redeploy()
    return await admission_response(
        task, "Rebuild-and-redeploy orchestration initiated. Check daemon logs for progress.", store
    )


@router.post("/deploy/secrets", status_code=202, responses=ADMISSION_RESPONSES)
async def deploy_secrets(
    request: Optional[SecretsRequest] = Body(default=None),
    environment: EnvironmentService = Depends(lambda: container.environment()),
    store: SnapshotStore = Depends(lambda: container.snapshot_store()),
):
    """Create the AWS secrets. Credentials default to the daemon's environment."""
    credentials = request.credentials if request else {}
    task = await environment.deploy_secrets(credentials)
    return await admission_response(
        task, "Secrets deployment initiated. Check daemon logs for progress.", store
    )


@router.post("/deploy/konflux", status_code=202, responses=ADMISSION_RESPONSES)
async def deploy_konflux(
    environment: EnvironmentService = Depends(lambda: container.environment()),
    store: SnapshotStore = Depends(lambda: container.snapshot_store()),
):
    task = await environment.deploy_konflux()
    return await admission_response(
        task,
        "Konflux deployment initiated. This may take 20-30 minutes. Check daemon logs for progress.",
        store,
    )


@router.post("/deploy/minimal-stack", status_code=202, responses=ADMISSION_RESPONSES)
async def deploy_minimal_stack(
    environment: EnvironmentService = Depends(lambda: container.environment()),
    store: SnapshotStore = Depends(lambda: container.snapshot_store()),
):
    task = await environment.deploy_minimal_stack()
    return await admission_response(
        task,
        "Minimal stack deployment initiated. This should take 2-3 minutes. Check daemon logs for progress.",
        store,
    )
