"""Git synchronization routes."""

from fastapi import APIRouter, Depends, status
from fastapi.responses import ORJSONResponse

from core.container import container
from core.logging import get_logger
from models.api import AcceptedResponse
from services.environment import EnvironmentService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/git", tags=["git"])


@router.post("/sync", status_code=202, response_model=AcceptedResponse)
async def sync_repositories(
    environment: EnvironmentService = Depends(lambda: container.environment()),
):
    """Sync every tracked repository with upstream in the background.

    Does not take the operation gate; failures only show up in the daemon log
    and in the refreshed repository facts.
    """
    environment.sync_repositories()
    return ORJSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=AcceptedResponse(
            message="Git synchronization initiated. Check daemon logs for sync progress."
        ).model_dump(),
    )
