"""Shared metadata and column types for all tables."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, MetaData, types

# Metadata for all tables
metadata = MetaData()


class UTCDateTime(types.TypeDecorator):
    """
    Timezone-aware timestamp stored as UTC on every backend.

    PostgreSQL keeps the offset natively. SQLite has no timezone support, so
    values are normalized to naive UTC on the way in and re-tagged as UTC on
    the way out. Naive input is treated as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        """Normalize to UTC before binding."""
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        """Return an aware UTC datetime."""
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
