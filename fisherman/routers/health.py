"""Health check endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends

from fisherman.dependencies import get_coordinator
from fisherman.schemas.health import HealthResponse
from fisherman.services.coordinator import DeploymentCoordinator

router = APIRouter()


@router.get("/healthz", response_model=HealthResponse)
async def healthz(
    coordinator: Annotated[DeploymentCoordinator, Depends(get_coordinator)],
) -> HealthResponse:
    """Report liveness and which repositories are mid-deployment."""
    return HealthResponse(status="ok", in_flight=coordinator.in_flight())
