"""Health check API endpoints."""

from fastapi import APIRouter

from titlescan.core.config import settings
from titlescan.schemas.api import HealthCheckResponse

router = APIRouter()


@router.get(
    "",
    response_model=HealthCheckResponse,
    summary="Health check endpoint",
    description="Check if the service is running",
    operation_id="get_service_health_status",
)
async def health_check() -> HealthCheckResponse:
    """Liveness check."""
    return HealthCheckResponse(
        status="healthy",
        version=settings.app_version,
        service=settings.app_name,
        pipeline_shape=settings.pipeline.shape,
    )
