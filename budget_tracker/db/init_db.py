"""
Database initialization - creates all tables and indexes
All database schema is defined in the SQLAlchemy models in budget_tracker/models/
"""
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from budget_tracker.db.base import Base

# Import all models to ensure they are registered with Base.metadata
from budget_tracker import models  # noqa: F401

logger = logging.getLogger(__name__)


async def init_database(engine: AsyncEngine):
    """
    Create all tables, indexes and foreign keys from the models.

    Called on application startup. A database that cannot be reached is logged
    and left for the next startup; any other failure propagates.
    """
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except OSError:
        logger.exception(
            "Cannot connect to the database. Check that it is running and that "
            "DATABASE_URL points at it."
        )
        return
    logger.info("Database initialization completed successfully")
