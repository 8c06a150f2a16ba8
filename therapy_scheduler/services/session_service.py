"""Session read service: lookups, listings, history and prior notes."""

from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_scheduler.config import settings
from therapy_scheduler.core.authorization import (
    Actor,
    ActorRole,
    SessionAction,
    authorize_session_action,
)
from therapy_scheduler.core.clock import Clock, day_bounds, to_clinic_time, utc_now
from therapy_scheduler.core.exceptions import NotFoundException
from therapy_scheduler.database import atomic
from therapy_scheduler.models.therapy_sessions import therapy_sessions
from therapy_scheduler.models.users import users
from therapy_scheduler.schemas.sessions import (
    ChangeHistoryResponse,
    PreviousSessionNote,
    SessionFilters,
    SessionListResponse,
    SessionResponse,
    SessionStatus,
    SessionView,
)
from therapy_scheduler.services.change_history_service import ChangeHistoryService


async def fetch_session(
    db: AsyncSession,
    session_id: UUID,
    for_update: bool = False,
) -> dict[str, Any]:
    """
    Load a session row, optionally locking it until the transaction ends.

    Raises:
        NotFoundException: If the session does not exist
    """
    stmt = select(therapy_sessions).where(therapy_sessions.c.id == session_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    row = result.fetchone()
    if not row:
        raise NotFoundException("Session not found")
    return dict(row._mapping)


async def fetch_user_name(db: AsyncSession, user_id: UUID) -> str | None:
    """Display name of a user, if known."""
    result = await db.execute(select(users.c.full_name).where(users.c.id == user_id))
    return result.scalar_one_or_none()


class SessionService:
    """Service for reading sessions on behalf of an actor."""

    def __init__(self, db: AsyncSession, clock: Clock = utc_now):
        """Initialize service with database session and clock."""
        self.db = db
        self.clock = clock
        self.history = ChangeHistoryService(db)

    async def get_authorized(
        self,
        session_id: UUID,
        actor: Actor,
        action: SessionAction,
        for_update: bool = False,
    ) -> dict[str, Any]:
        """Load a session and check the actor may perform the action on it."""
        session = await fetch_session(self.db, session_id, for_update)
        authorize_session_action(actor, session, action)
        return session

    async def get_session(self, session_id: UUID, actor: Actor) -> SessionResponse:
        """
        Get session by ID.

        Raises:
            NotFoundException: If the session does not exist or the actor is not a party to it
        """
        async with atomic(self.db):
            session = await self.get_authorized(session_id, actor, SessionAction.VIEW)
        return SessionResponse.model_validate(session)

    async def list_sessions(
        self,
        actor: Actor,
        filters: SessionFilters,
    ) -> SessionListResponse:
        """
        List the actor's sessions with a view, filters and pagination.

        Args:
            actor: Acting user; non-admins only see their own sessions
            filters: View, filter and pagination parameters

        Returns:
            Paginated list of sessions
        """
        now = self.clock()
        conditions = []

        if actor.role is ActorRole.THERAPIST:
            conditions.append(therapy_sessions.c.therapist_id == actor.id)
        elif actor.role is ActorRole.PATIENT:
            conditions.append(therapy_sessions.c.patient_id == actor.id)

        if filters.patient_id:
            conditions.append(therapy_sessions.c.patient_id == filters.patient_id)
        if filters.therapist_id:
            conditions.append(therapy_sessions.c.therapist_id == filters.therapist_id)
        if filters.session_type:
            conditions.append(therapy_sessions.c.session_type == filters.session_type.value)
        if filters.from_date:
            conditions.append(therapy_sessions.c.scheduled_at >= day_bounds(filters.from_date)[0])
        if filters.to_date:
            conditions.append(therapy_sessions.c.scheduled_at < day_bounds(filters.to_date)[1])

        ascending = False
        if filters.view is SessionView.UPCOMING:
            conditions.append(therapy_sessions.c.scheduled_at >= now)
            conditions.append(therapy_sessions.c.status == SessionStatus.SCHEDULED.value)
            ascending = True
        elif filters.view is SessionView.PAST:
            conditions.append(therapy_sessions.c.scheduled_at < now)
        elif filters.view is SessionView.TODAY:
            today_start, today_end = day_bounds(to_clinic_time(now).date())
            conditions.append(therapy_sessions.c.scheduled_at >= today_start)
            conditions.append(therapy_sessions.c.scheduled_at < today_end)
            ascending = True
        elif filters.view is SessionView.COMPLETED:
            conditions.append(therapy_sessions.c.status == SessionStatus.COMPLETED.value)
        elif filters.view is SessionView.CANCELLED:
            conditions.append(therapy_sessions.c.status == SessionStatus.CANCELLED.value)

        where = and_(true(), *conditions)

        offset = (filters.page - 1) * filters.page_size
        order = (
            therapy_sessions.c.scheduled_at.asc()
            if ascending
            else therapy_sessions.c.scheduled_at.desc()
        )
        stmt = (
            select(therapy_sessions)
            .where(where)
            .order_by(order)
            .limit(filters.page_size)
            .offset(offset)
        )

        async with atomic(self.db):
            total_result = await self.db.execute(
                select(func.count()).select_from(therapy_sessions).where(where)
            )
            total = total_result.scalar() or 0
            result = await self.db.execute(stmt)
            rows = result.fetchall()
        items = [SessionResponse.model_validate(dict(row._mapping)) for row in rows]

        return SessionListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )

    async def get_change_history(
        self,
        session_id: UUID,
        actor: Actor,
        limit: int | None = None,
    ) -> ChangeHistoryResponse:
        """
        Get a session's reschedules and cancellations in chronological order.

        Args:
            session_id: Session ID
            actor: Acting user
            limit: Only the most recent N records

        Returns:
            Change history, oldest first
        """
        async with atomic(self.db):
            await self.get_authorized(session_id, actor, SessionAction.VIEW_HISTORY)
            items = await self.history.history(session_id, limit=limit)
        return ChangeHistoryResponse(session_id=session_id, items=items)

    async def get_previous_notes(
        self,
        session_id: UUID,
        actor: Actor,
        limit: int | None = None,
    ) -> list[PreviousSessionNote]:
        """
        Get notes from earlier completed sessions with the same patient.

        Requires the same access as writing notes on this session.
        """
        async with atomic(self.db):
            session = await self.get_authorized(session_id, actor, SessionAction.UPDATE_NOTES)
            return await self.history.recent_session_notes(
                therapist_id=session["therapist_id"],
                patient_id=session["patient_id"],
                exclude_session_id=session_id,
                limit=limit or settings.previous_notes_limit,
            )
