"""Health check endpoint with token store connectivity check.

Accessible without authentication so that orchestrators can probe it.
"""

from fastapi import APIRouter, Request, Response, status
from pydantic import BaseModel

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    storage: str
    centralized: bool = False


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Token store is unreachable"},
    },
)
async def health_check(request: Request, response: Response) -> HealthResponse:
    """
    Health check endpoint.

    Returns 503 if the token store does not answer a ping.
    """
    settings = request.app.state.settings
    store = request.app.state.store
    store_healthy = await store.ping()

    # Set appropriate status code for container orchestration
    if not store_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if store_healthy else "unhealthy",
        version=settings.app_version,
        storage=store.storage_type if store_healthy else "disconnected",
        centralized=settings.enable_centralized_service,
    )
