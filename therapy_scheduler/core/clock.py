"""Time helpers shared by the scheduling services."""

from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from therapy_scheduler.config import settings

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def clinic_zone() -> ZoneInfo:
    """Timezone the working-hours template is expressed in."""
    return ZoneInfo(settings.clinic_timezone)


def day_bounds(on_date: date) -> tuple[datetime, datetime]:
    """Return the UTC [start, end) range covering a clinic-local calendar day."""
    start = datetime.combine(on_date, time.min, tzinfo=clinic_zone())
    end = start + timedelta(days=1)
    return start.astimezone(UTC), end.astimezone(UTC)


def to_clinic_time(value: datetime) -> datetime:
    """Convert a timestamp to clinic-local time."""
    return value.astimezone(clinic_zone())


def format_display(value: datetime) -> str:
    """Human-readable clinic-local timestamp, e.g. 'Monday, March 10, 2025 at 10:00 AM'."""
    local = to_clinic_time(value)
    hour = local.strftime("%I").lstrip("0")
    return f"{local.strftime('%A, %B')} {local.day}, {local.year} at {hour}:{local.strftime('%M %p')}"
