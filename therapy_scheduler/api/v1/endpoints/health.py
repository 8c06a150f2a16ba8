"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from therapy_scheduler.config import settings
from therapy_scheduler.core.firebase import is_firebase_initialized
from therapy_scheduler.core.redis_client import check_redis_connection
from therapy_scheduler.database import check_database_connection

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Health check response including backing services."""

    database: str
    redis: str
    notifications: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Report that the API process is up."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Detailed health check",
)
async def detailed_health_check() -> DetailedHealthResponse:
    """
    Health of the database, the availability cache and the notification backend.

    The scheduling core needs only the database; a missing cache or push
    backend degrades the service without stopping it.
    """
    db_healthy = await check_database_connection()
    redis_healthy = await check_redis_connection()

    if settings.notification_backend == "log":
        notifications = "logging"
    else:
        notifications = "healthy" if is_firebase_initialized() else "unavailable"

    overall = "healthy"
    if not db_healthy:
        overall = "unhealthy"
    elif not redis_healthy or notifications == "unavailable":
        overall = "degraded"

    return DetailedHealthResponse(
        status=overall,
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        redis="healthy" if redis_healthy else "unhealthy",
        notifications=notifications,
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """Simple ping endpoint."""
    return {"message": "pong"}
