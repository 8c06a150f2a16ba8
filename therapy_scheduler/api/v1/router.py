"""API v1 router configuration."""

from fastapi import APIRouter

from therapy_scheduler.api.v1.endpoints import (
    availability,
    health,
    notifications,
    sessions,
)

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(availability.router, tags=["Availability"])
api_router.include_router(sessions.router, prefix="/sessions", tags=["Sessions"])
api_router.include_router(notifications.router, tags=["Notifications"])
