"""Availability service: open slots derived from the working-hours template."""

from datetime import UTC, date, datetime, time, timedelta
from uuid import UUID

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_scheduler.config import settings
from therapy_scheduler.core.clock import clinic_zone, day_bounds, to_clinic_time
from therapy_scheduler.core.redis_client import CacheManager
from therapy_scheduler.models.therapy_sessions import therapy_sessions
from therapy_scheduler.schemas.sessions import AvailabilityWindow, SessionStatus

logger = structlog.get_logger(__name__)


def availability_cache_key(therapist_id: UUID, on_date: date) -> str:
    """Cache key for one therapist's slot list on one date."""
    return f"availability:{therapist_id}:{on_date.isoformat()}"


class AvailabilityService:
    """Service computing bookable slots for a therapist."""

    def __init__(self, db: AsyncSession, cache: CacheManager | None = None):
        """Initialize service with database session and optional cache."""
        self.db = db
        self.cache = cache

    @staticmethod
    def slot_template(on_date: date) -> list[datetime]:
        """
        Candidate slot starts for one clinic-local day, ascending, in UTC.

        With the default settings this is 09:00 to 16:00, one slot per hour.
        """
        zone = clinic_zone()
        step = timedelta(minutes=settings.slot_length_minutes)
        current = datetime.combine(on_date, time(hour=settings.working_hours_start), tzinfo=zone)
        if settings.working_hours_end >= 24:
            day_end = datetime.combine(on_date + timedelta(days=1), time.min, tzinfo=zone)
        else:
            day_end = datetime.combine(on_date, time(hour=settings.working_hours_end), tzinfo=zone)

        starts = []
        while current + step <= day_end:
            starts.append(current.astimezone(UTC))
            current += step
        return starts

    async def _booked_start_times(self, therapist_id: UUID, on_date: date) -> set[time]:
        """Clinic-local start times held by non-cancelled sessions on a date."""
        day_start, day_end = day_bounds(on_date)
        stmt = select(therapy_sessions.c.scheduled_at).where(
            and_(
                therapy_sessions.c.therapist_id == therapist_id,
                therapy_sessions.c.scheduled_at >= day_start,
                therapy_sessions.c.scheduled_at < day_end,
                therapy_sessions.c.status != SessionStatus.CANCELLED.value,
            )
        )
        result = await self.db.execute(stmt)
        return {
            to_clinic_time(row.scheduled_at).time().replace(second=0, microsecond=0)
            for row in result.fetchall()
        }

    async def available_slots(
        self,
        therapist_id: UUID,
        on_date: date,
    ) -> list[AvailabilityWindow]:
        """
        Get open slots for a therapist on a date.

        A template slot is taken when a non-cancelled session starts at the
        same clinic-local time. Durations are not compared.

        Args:
            therapist_id: Therapist ID
            on_date: Clinic-local calendar date

        Returns:
            Open slots ordered by start time; empty when fully booked
        """
        key = availability_cache_key(therapist_id, on_date)
        if self.cache is not None:
            cached = self.cache.get_json(key)
            if cached is not None:
                logger.debug("availability_cache_hit", therapist_id=str(therapist_id), date=str(on_date))
                return [AvailabilityWindow.model_validate(item) for item in cached]

        booked = await self._booked_start_times(therapist_id, on_date)
        slots = []
        for starts_at in self.slot_template(on_date):
            local_start = to_clinic_time(starts_at).time()
            if local_start in booked:
                continue
            slots.append(
                AvailabilityWindow(
                    therapist_id=therapist_id,
                    on_date=on_date,
                    start_time=local_start,
                    starts_at=starts_at,
                    duration_minutes=settings.slot_length_minutes,
                )
            )

        if self.cache is not None:
            self.cache.set_json(
                key,
                [slot.model_dump(mode="json") for slot in slots],
                ttl=settings.availability_cache_ttl,
            )
        return slots

    def invalidate(self, therapist_id: UUID, *moments: datetime) -> None:
        """Drop cached slot lists for the clinic-local dates of the given timestamps."""
        if self.cache is None or not moments:
            return
        keys = {availability_cache_key(therapist_id, to_clinic_time(m).date()) for m in moments}
        self.cache.delete(*sorted(keys))

    async def next_available_slots(
        self,
        therapist_id: UUID,
        after: datetime,
        limit: int = 3,
    ) -> list[datetime]:
        """
        Find the next open slot starts after a moment.

        Searches the same clinic-local day first, then following days up to
        the configured horizon.

        Args:
            therapist_id: Therapist ID
            after: Only slots starting strictly later are returned
            limit: Maximum number of suggestions

        Returns:
            Slot start times in UTC, ascending
        """
        first_day = to_clinic_time(after).date()
        suggestions: list[datetime] = []
        for offset in range(settings.availability_search_days + 1):
            slots = await self.available_slots(therapist_id, first_day + timedelta(days=offset))
            for slot in slots:
                if slot.starts_at > after:
                    suggestions.append(slot.starts_at)
                    if len(suggestions) >= limit:
                        return suggestions
        return suggestions
