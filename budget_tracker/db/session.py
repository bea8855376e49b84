from contextlib import asynccontextmanager
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from budget_tracker.core.config import settings


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_recycle": 3600,   # Recycle connections after 1 hour
        "pool_reset_on_return": "commit",
    }


engine = create_async_engine(
    settings.SQLALCHEMY_DATABASE_URI,
    echo=False,
    **_engine_options(settings.SQLALCHEMY_DATABASE_URI),
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Unit of work for one mutation.

    The entity write, the parent recompute and the activity log entry either all
    commit here or are all rolled back.
    """
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise
