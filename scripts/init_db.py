"""Script to initialize the database."""

import asyncio

from telemed.database import create_tables, engine


async def init_db() -> None:
    """Create every table on the configured database."""
    await create_tables()
    await engine.dispose()
    print("Database initialized successfully!")


if __name__ == "__main__":
    asyncio.run(init_db())
