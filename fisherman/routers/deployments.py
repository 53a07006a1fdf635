"""Read-only view of recent deployment results."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from fisherman.dependencies import get_coordinator
from fisherman.schemas.deployments import DeploymentHistoryResponse
from fisherman.services.coordinator import DeploymentCoordinator

router = APIRouter(prefix="/deployments", tags=["deployments"])


@router.get("", response_model=DeploymentHistoryResponse)
async def list_deployments(
    coordinator: Annotated[DeploymentCoordinator, Depends(get_coordinator)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> DeploymentHistoryResponse:
    """Return the most recent terminal results, newest first."""
    return DeploymentHistoryResponse(deployments=coordinator.history.recent(limit))
