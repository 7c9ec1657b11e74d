"""Database utility functions and common queries."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from achadinhos.models.base import Base


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables registered on Base.metadata (no-op for existing ones)."""
    # Importing the package registers every model with Base.metadata
    import achadinhos.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_database_health(session: AsyncSession) -> dict:
    """Check if database is accessible and responsive.

    Returns:
        dict with 'healthy' boolean and optional 'error' message
    """
    try:
        result = await session.execute(text("SELECT 1"))
        result.scalar()
        return {"healthy": True}
    except Exception as e:
        return {"healthy": False, "error": str(e)}
