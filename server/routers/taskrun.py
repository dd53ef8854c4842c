"""TaskRun execution routes."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from core.container import container
from core.logging import get_logger
from models.api import TaskRunRunRequest
from routers.operations import ADMISSION_RESPONSES, admission_response
from services.environment import EnvironmentService
from services.snapshot import SnapshotStore

logger = get_logger(__name__)
router = APIRouter(prefix="/api/taskrun", tags=["taskrun"])


@router.post("/run", status_code=202, responses=ADMISSION_RESPONSES)
async def run_taskrun(
    request: Optional[TaskRunRunRequest] = Body(default=None),
    environment: EnvironmentService = Depends(lambda: container.environment()),
    store: SnapshotStore = Depends(lambda: container.snapshot_store()),
):
    """Submit a TaskRun YAML file, stream its logs and record the outcome.

    The result lands in ``taskrun_info`` of GET /api/status.
    """
    yaml_path = (request.yaml_path if request else "").strip()
    if not yaml_path:
        raise HTTPException(status_code=400, detail="yaml_path is required")

    task = await environment.run_taskrun(yaml_path)
    return await admission_response(task, "TaskRun workflow started", store)
