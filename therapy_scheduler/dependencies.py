"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_scheduler.core.authorization import Actor, ActorRole
from therapy_scheduler.core.redis_client import CacheManager, get_redis_client
from therapy_scheduler.core.security import decode_access_token
from therapy_scheduler.database import get_db
from therapy_scheduler.models.users import users
from therapy_scheduler.services.availability_service import AvailabilityService
from therapy_scheduler.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)

# Security
security = HTTPBearer(auto_error=False)


def _credentials_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        User ID from token

    Raises:
        HTTPException: If token is missing, invalid or expired
    """
    if credentials is None:
        raise _credentials_error()

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _credentials_error()

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        raise _credentials_error()

    try:
        return UUID(user_id_str)
    except ValueError:
        raise _credentials_error()


async def get_current_actor(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Actor:
    """
    Resolve the acting user from the users table.

    The role comes from the stored user, never from the token.

    Raises:
        HTTPException: If user not found or inactive
    """
    result = await db.execute(
        select(users.c.id, users.c.role, users.c.is_active).where(users.c.id == user_id)
    )
    user = result.fetchone()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return Actor(id=user.id, role=ActorRole(user.role))


def get_cache_manager() -> CacheManager | None:
    """Availability cache backed by Redis."""
    return CacheManager(get_redis_client())


def get_availability_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheManager | None, Depends(get_cache_manager)],
) -> AvailabilityService:
    """Availability service sharing the request's session and cache."""
    return AvailabilityService(db, cache)


def get_dispatcher(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> NotificationDispatcher:
    """Notification dispatcher for the configured backend."""
    return get_notification_dispatcher(db)


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Availability = Annotated[AvailabilityService, Depends(get_availability_service)]
Dispatcher = Annotated[NotificationDispatcher, Depends(get_dispatcher)]
