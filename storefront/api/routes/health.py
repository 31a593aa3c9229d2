"""Health check endpoint for monitoring and deployment verification."""

from fastapi import APIRouter

from storefront.core.config import get_settings
from storefront.schemas.common import HealthResponse, HealthStatus

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Basic health check to verify the service is running. Used for liveness probes.",
)
async def health_check() -> HealthResponse:
    """Return basic health status.

    Always returns 200 while the service is running.

    Returns:
        HealthResponse: Current health status with timestamp.
    """
    return HealthResponse(status=HealthStatus.HEALTHY, storage_backend=get_settings().storage_backend)
