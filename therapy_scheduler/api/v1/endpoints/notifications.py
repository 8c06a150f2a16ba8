"""Notification endpoints."""

from fastapi import APIRouter, status

from therapy_scheduler.dependencies import CurrentActor, DatabaseSession
from therapy_scheduler.schemas.notifications import PushTokenRegister, PushTokenResponse
from therapy_scheduler.services.notification_service import PushTokenService

router = APIRouter(prefix="/notifications")


@router.post(
    "/register-token",
    response_model=PushTokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register FCM token",
)
async def register_fcm_token(
    token_data: PushTokenRegister,
    current_actor: CurrentActor,
    db: DatabaseSession,
) -> PushTokenResponse:
    """
    Register or refresh the FCM token of the authenticated user.

    Cancellation, reschedule and follow-up notifications are pushed to the
    user's active tokens.

    Args:
        token_data: FCM token and platform information
        current_actor: Authenticated actor
        db: Database session

    Returns:
        Registered token details
    """
    token = await PushTokenService.register_token(
        db=db,
        user_id=current_actor.id,
        fcm_token=token_data.fcm_token,
        platform=token_data.platform,
    )
    return PushTokenResponse.model_validate(token)
