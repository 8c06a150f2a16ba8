"""Session notifications: content builders and delivery adapters."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from firebase_admin import messaging
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_scheduler.config import settings
from therapy_scheduler.core.clock import format_display
from therapy_scheduler.core.exceptions import DeliveryException
from therapy_scheduler.models.notifications import notifications
from therapy_scheduler.models.push_tokens import push_tokens
from therapy_scheduler.schemas.notifications import (
    NotificationAck,
    NotificationRequest,
    NotificationType,
)
from therapy_scheduler.schemas.sessions import RescheduleIntent

logger = structlog.get_logger(__name__)

_RESCHEDULE_INTENT_SUFFIX = {
    RescheduleIntent.AUTO: " A new appointment will be scheduled automatically.",
    RescheduleIntent.REQUEST: " Please contact us to reschedule your appointment.",
}


def _therapist_label(name: str | None) -> str:
    return f"Dr. {name}" if name else "your therapist"


def build_cancellation_notification(
    session: dict[str, Any],
    recipient_id: UUID,
    therapist_name: str | None,
    late: bool,
    intent: RescheduleIntent = RescheduleIntent.NONE,
    cancelled_by_patient: bool = False,
    patient_name: str | None = None,
) -> NotificationRequest:
    """
    Build the notification sent when a session is cancelled.

    Therapist cancellations notify the patient; patient cancellations
    notify the therapist.
    """
    when = format_display(session["scheduled_at"])
    if cancelled_by_patient:
        content = (
            f"{patient_name or 'Your patient'} cancelled the appointment "
            f"scheduled for {when}. Reason: {session['cancellation_reason']}"
        )
    else:
        content = (
            f"Your appointment with {_therapist_label(therapist_name)} "
            f"scheduled for {when} has been cancelled."
        )
    if late:
        content += (
            f" This is a late cancellation (less than "
            f"{settings.late_cancellation_window_hours} hours notice)."
        )
    if not cancelled_by_patient:
        content += _RESCHEDULE_INTENT_SUFFIX.get(intent, "")

    return NotificationRequest(
        recipient_id=recipient_id,
        notification_type=NotificationType.CANCELLATION,
        title="Late Appointment Cancellation" if late else "Appointment Cancelled",
        content=content,
        related_session_id=session["id"],
        priority="high" if late else "normal",
        data={
            "type": NotificationType.CANCELLATION.value,
            "session_id": str(session["id"]),
            "late_cancellation": str(late).lower(),
            "reschedule_intent": intent.value,
            "screen": "/sessions",
        },
    )


def build_reschedule_notification(
    session: dict[str, Any],
    therapist_name: str | None,
) -> NotificationRequest:
    """Build the notification telling a patient their session moved."""
    when = format_display(session["scheduled_at"])
    return NotificationRequest(
        recipient_id=session["patient_id"],
        notification_type=NotificationType.RESCHEDULE,
        title="Appointment Rescheduled",
        content=f"Your appointment with {_therapist_label(therapist_name)} has been rescheduled to {when}",
        related_session_id=session["id"],
        data={
            "type": NotificationType.RESCHEDULE.value,
            "session_id": str(session["id"]),
            "scheduled_at": session["scheduled_at"].isoformat(),
            "screen": "/sessions",
        },
    )


def build_follow_up_notification(
    follow_up: dict[str, Any],
    therapist_name: str | None,
) -> NotificationRequest:
    """Build the notification announcing a booked follow-up session."""
    when = format_display(follow_up["scheduled_at"])
    return NotificationRequest(
        recipient_id=follow_up["patient_id"],
        notification_type=NotificationType.FOLLOW_UP,
        title="Follow-up Session Scheduled",
        content=f"A follow-up session with {_therapist_label(therapist_name)} has been scheduled for {when}.",
        related_session_id=follow_up["id"],
        data={
            "type": NotificationType.FOLLOW_UP.value,
            "session_id": str(follow_up["id"]),
            "scheduled_at": follow_up["scheduled_at"].isoformat(),
            "screen": "/sessions",
        },
    )


class NotificationDispatcher(ABC):
    """Delivers notification requests. Called only after the scheduling commit."""

    @abstractmethod
    async def send(self, request: NotificationRequest) -> NotificationAck:
        """
        Deliver one notification.

        Raises:
            DeliveryException: If the notification could not be delivered
        """


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Development backend that only logs notifications."""

    async def send(self, request: NotificationRequest) -> NotificationAck:
        logger.info(
            "notification_logged",
            recipient_id=str(request.recipient_id),
            notification_type=request.notification_type.value,
            session_id=str(request.related_session_id),
            title=request.title,
            content=request.content,
        )
        return NotificationAck(success_count=1, failure_count=0)


class PushNotificationDispatcher(NotificationDispatcher):
    """Records notifications and delivers them through Firebase Cloud Messaging."""

    def __init__(self, db: AsyncSession):
        """Initialize dispatcher with database session."""
        self.db = db

    @staticmethod
    async def send_push_notification(
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, str] | None = None,
    ) -> tuple[int, int]:
        """
        Send push notification to multiple devices.

        Args:
            tokens: List of FCM tokens
            title: Notification title
            body: Notification body
            data: Optional data payload

        Returns:
            Tuple of (success_count, failure_count)
        """
        if not tokens:
            return 0, 0

        try:
            message = messaging.MulticastMessage(
                notification=messaging.Notification(title=title, body=body),
                data=data or {},
                tokens=tokens,
                apns=messaging.APNSConfig(
                    payload=messaging.APNSPayload(aps=messaging.Aps(sound="default")),
                ),
                android=messaging.AndroidConfig(priority="high"),
            )
            response = messaging.send_each_for_multicast(message)
            return response.success_count, response.failure_count

        except Exception as e:
            logger.error("push_notification_failed", error=str(e), title=title)
            return 0, len(tokens)

    async def _mark(self, notification_id: UUID, **values: Any) -> None:
        await self.db.execute(
            update(notifications)
            .where(notifications.c.id == notification_id)
            .values(updated_at=datetime.now(UTC), **values)
        )
        await self.db.commit()

    async def send(self, request: NotificationRequest) -> NotificationAck:
        """Deliver one notification, leaving the session usable if storage fails."""
        try:
            return await self._deliver(request)
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def _deliver(self, request: NotificationRequest) -> NotificationAck:
        """
        Store the notification and push it to the recipient's active devices.

        Args:
            request: Notification to deliver

        Returns:
            Delivery acknowledgement

        Raises:
            DeliveryException: If the recipient has no active device or every push failed
        """
        result = await self.db.execute(
            notifications.insert()
            .values(
                user_id=request.recipient_id,
                title=request.title,
                body=request.content,
                notification_type=request.notification_type.value,
                priority=request.priority,
                related_session_id=request.related_session_id,
                data=request.data,
                status="pending",
            )
            .returning(notifications.c.id)
        )
        notification_id = result.scalar_one()

        result = await self.db.execute(
            select(push_tokens.c.fcm_token).where(
                push_tokens.c.user_id == request.recipient_id,
                push_tokens.c.is_active == True,  # noqa: E712
            )
        )
        tokens = [row.fcm_token for row in result.fetchall()]

        if not tokens:
            await self._mark(
                notification_id, status="failed", failure_reason="No active tokens for user"
            )
            raise DeliveryException("Recipient has no active push tokens")

        await self._mark(notification_id, status="sent", sent_at=datetime.now(UTC))

        success_count, failure_count = await self.send_push_notification(
            tokens=tokens,
            title=request.title,
            body=request.content,
            data=request.data,
        )

        if success_count == 0:
            await self._mark(notification_id, status="failed", failure_reason="Push delivery failed")
            raise DeliveryException("Push delivery failed for every device")

        await self._mark(notification_id, status="delivered", delivered_at=datetime.now(UTC))
        return NotificationAck(
            notification_id=notification_id,
            success_count=success_count,
            failure_count=failure_count,
        )


def get_notification_dispatcher(db: AsyncSession) -> NotificationDispatcher:
    """Dispatcher for the configured notification backend."""
    if settings.notification_backend == "log":
        return LoggingNotificationDispatcher()
    return PushNotificationDispatcher(db)


async def dispatch_notifications(
    dispatcher: NotificationDispatcher | None,
    requests: Sequence[NotificationRequest | None],
) -> list[NotificationAck | None]:
    """
    Deliver notifications after a committed scheduling change.

    Failures are logged and reported as ``None``; they never propagate.
    """
    acks: list[NotificationAck | None] = []
    for request in requests:
        if request is None or dispatcher is None:
            continue
        try:
            ack = await dispatcher.send(request)
        except Exception as e:
            logger.warning(
                "notification_delivery_failed",
                recipient_id=str(request.recipient_id),
                notification_type=request.notification_type.value,
                session_id=str(request.related_session_id),
                error=str(e),
            )
            acks.append(None)
            continue
        logger.info(
            "notification_dispatched",
            recipient_id=str(request.recipient_id),
            notification_type=request.notification_type.value,
            session_id=str(request.related_session_id),
            success_count=ack.success_count,
        )
        acks.append(ack)
    return acks


class PushTokenService:
    """Service for managing device push tokens."""

    @staticmethod
    async def register_token(
        db: AsyncSession,
        user_id: UUID,
        fcm_token: str,
        platform: str,
    ) -> dict[str, Any]:
        """
        Register or refresh an FCM token for a user.

        Other tokens of the same user on the same platform are deactivated.

        Args:
            db: Database session
            user_id: User ID
            fcm_token: FCM token
            platform: Platform (android, ios, web)

        Returns:
            Created or updated token record
        """
        now = datetime.now(UTC)
        await db.execute(
            update(push_tokens)
            .where(
                push_tokens.c.user_id == user_id,
                push_tokens.c.platform == platform,
                push_tokens.c.fcm_token != fcm_token,
            )
            .values(is_active=False)
        )

        result = await db.execute(
            select(push_tokens.c.id).where(
                push_tokens.c.user_id == user_id,
                push_tokens.c.fcm_token == fcm_token,
            )
        )
        existing = result.first()

        if existing:
            stmt = (
                update(push_tokens)
                .where(push_tokens.c.id == existing.id)
                .values(is_active=True, last_used_at=now, platform=platform)
                .returning(push_tokens)
            )
        else:
            stmt = (
                push_tokens.insert()
                .values(
                    user_id=user_id,
                    fcm_token=fcm_token,
                    platform=platform,
                    is_active=True,
                    last_used_at=now,
                )
                .returning(push_tokens)
            )
        result = await db.execute(stmt)
        row = result.fetchone()
        await db.commit()

        logger.info("push_token_registered", user_id=str(user_id), platform=platform)
        return dict(row._mapping)
