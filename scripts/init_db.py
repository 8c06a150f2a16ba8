"""Script to initialize the database without running migrations.

Intended for local development against SQLite or a scratch PostgreSQL
database; deployed databases are managed with ``scripts/migrate.py``.
"""

import asyncio

from sqlalchemy import text

from therapy_scheduler.database import engine
from therapy_scheduler.models import metadata


async def init_db() -> None:
    """Create all scheduling tables and indexes."""
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print("✓ Database initialized successfully!")


if __name__ == "__main__":
    asyncio.run(init_db())
