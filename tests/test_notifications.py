"""Tests for notification content, delivery and push token endpoints."""

from datetime import UTC, datetime
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import insert, select

from therapy_scheduler.core.exceptions import DeliveryException
from therapy_scheduler.models.notifications import notifications
from therapy_scheduler.models.push_tokens import push_tokens
from therapy_scheduler.schemas.notifications import NotificationRequest, NotificationType
from therapy_scheduler.services.notification_service import (
    LoggingNotificationDispatcher,
    PushNotificationDispatcher,
    build_follow_up_notification,
    build_reschedule_notification,
    dispatch_notifications,
    get_notification_dispatcher,
)

SEND_MULTICAST = "therapy_scheduler.services.notification_service.messaging.send_each_for_multicast"


def _session_row(**overrides) -> dict:
    row = {
        "id": uuid4(),
        "therapist_id": uuid4(),
        "patient_id": uuid4(),
        "scheduled_at": datetime(2025, 3, 11, 14, 0, tzinfo=UTC),
    }
    row.update(overrides)
    return row


def _request(recipient_id) -> NotificationRequest:
    return NotificationRequest(
        recipient_id=recipient_id,
        notification_type=NotificationType.RESCHEDULE,
        title="Appointment Rescheduled",
        content="Your appointment has been rescheduled",
        related_session_id=uuid4(),
        data={"type": "appointment_rescheduled"},
    )


async def _add_token(db_session, user_id, token="fcm-token-1", platform="android") -> None:
    await db_session.execute(
        insert(push_tokens).values(
            id=uuid4(), user_id=user_id, fcm_token=token, platform=platform, is_active=True
        )
    )
    await db_session.commit()


async def _stored_notification(db_session) -> dict:
    result = await db_session.execute(select(notifications))
    row = dict(result.fetchone()._mapping)
    await db_session.commit()
    return row


def test_reschedule_notification_content():
    row = _session_row()

    request = build_reschedule_notification(row, "Sarah Miller")

    assert request.recipient_id == row["patient_id"]
    assert request.title == "Appointment Rescheduled"
    assert request.content == (
        "Your appointment with Dr. Sarah Miller has been rescheduled to "
        "Tuesday, March 11, 2025 at 2:00 PM"
    )
    assert request.data["scheduled_at"] == "2025-03-11T14:00:00+00:00"


def test_notification_without_therapist_name():
    request = build_reschedule_notification(_session_row(), None)

    assert request.content.startswith("Your appointment with your therapist")


def test_follow_up_notification_content():
    row = _session_row()

    request = build_follow_up_notification(row, "Sarah Miller")

    assert request.notification_type is NotificationType.FOLLOW_UP
    assert request.title == "Follow-up Session Scheduled"
    assert request.related_session_id == row["id"]


def test_dispatcher_follows_configured_backend(db_session):
    assert isinstance(get_notification_dispatcher(db_session), LoggingNotificationDispatcher)

    with patch(
        "therapy_scheduler.services.notification_service.settings.notification_backend", "push"
    ):
        assert isinstance(get_notification_dispatcher(db_session), PushNotificationDispatcher)


async def test_dispatch_swallows_delivery_errors(failing_dispatcher, patient):
    acks = await dispatch_notifications(failing_dispatcher, [_request(patient["id"])])

    assert acks == [None]
    assert len(failing_dispatcher.sent) == 1


async def test_dispatch_without_dispatcher_is_a_no_op(patient):
    assert await dispatch_notifications(None, [_request(patient["id"])]) == []


async def test_logging_dispatcher_always_succeeds(patient):
    ack = await LoggingNotificationDispatcher().send(_request(patient["id"]))

    assert ack.success_count == 1


class TestPushNotificationDispatcher:
    async def test_no_tokens_fails_delivery(self, db_session, patient):
        dispatcher = PushNotificationDispatcher(db_session)

        with pytest.raises(DeliveryException):
            await dispatcher.send(_request(patient["id"]))

        stored = await _stored_notification(db_session)
        assert stored["status"] == "failed"
        assert stored["failure_reason"] == "No active tokens for user"

    @patch(SEND_MULTICAST)
    async def test_successful_delivery(self, mock_send, db_session, patient):
        mock_send.return_value = MagicMock(success_count=1, failure_count=0)
        await _add_token(db_session, patient["id"])
        dispatcher = PushNotificationDispatcher(db_session)

        ack = await dispatcher.send(_request(patient["id"]))

        assert ack.success_count == 1
        assert ack.notification_id is not None
        mock_send.assert_called_once()
        message = mock_send.call_args.args[0]
        assert message.tokens == ["fcm-token-1"]

        stored = await _stored_notification(db_session)
        assert stored["id"] == ack.notification_id
        assert stored["status"] == "delivered"
        assert stored["delivered_at"] is not None

    @patch(SEND_MULTICAST)
    async def test_every_device_failing_fails_delivery(self, mock_send, db_session, patient):
        mock_send.return_value = MagicMock(success_count=0, failure_count=1)
        await _add_token(db_session, patient["id"])
        dispatcher = PushNotificationDispatcher(db_session)

        with pytest.raises(DeliveryException):
            await dispatcher.send(_request(patient["id"]))

        stored = await _stored_notification(db_session)
        assert stored["status"] == "failed"

    @patch(SEND_MULTICAST)
    async def test_gateway_error_fails_delivery(self, mock_send, db_session, patient):
        mock_send.side_effect = Exception("FCM unreachable")
        await _add_token(db_session, patient["id"])
        dispatcher = PushNotificationDispatcher(db_session)

        with pytest.raises(DeliveryException):
            await dispatcher.send(_request(patient["id"]))


class TestRegisterToken:
    async def test_register_token(self, client: AsyncClient, patient, patient_headers):
        response = await client.post(
            "/api/v1/notifications/register-token",
            json={"fcm_token": "device-token-abc", "platform": "ios"},
            headers=patient_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["user_id"] == str(patient["id"])
        assert data["fcm_token"] == "device-token-abc"
        assert data["platform"] == "ios"
        assert data["is_active"] is True

    async def test_reregistering_refreshes_same_token(
        self, client: AsyncClient, patient_headers
    ):
        payload = {"fcm_token": "device-token-abc", "platform": "android"}
        first = await client.post(
            "/api/v1/notifications/register-token", json=payload, headers=patient_headers
        )
        second = await client.post(
            "/api/v1/notifications/register-token", json=payload, headers=patient_headers
        )

        assert first.json()["id"] == second.json()["id"]

    async def test_new_token_deactivates_old_one(
        self, client: AsyncClient, db_session, patient, patient_headers
    ):
        for token in ("old-token", "new-token"):
            await client.post(
                "/api/v1/notifications/register-token",
                json={"fcm_token": token, "platform": "android"},
                headers=patient_headers,
            )

        result = await db_session.execute(
            select(push_tokens.c.fcm_token, push_tokens.c.is_active).where(
                push_tokens.c.user_id == patient["id"]
            )
        )
        states = {row.fcm_token: row.is_active for row in result.fetchall()}
        await db_session.commit()
        assert states == {"old-token": False, "new-token": True}

    async def test_invalid_platform(self, client: AsyncClient, patient_headers):
        response = await client.post(
            "/api/v1/notifications/register-token",
            json={"fcm_token": "device-token-abc", "platform": "blackberry"},
            headers=patient_headers,
        )

        assert response.status_code == 422

    async def test_register_token_requires_auth(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/notifications/register-token",
            json={"fcm_token": "device-token-abc", "platform": "ios"},
        )

        assert response.status_code == 401
