"""Database engine and async session factory."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shared.config import settings


def _engine_options(url: str) -> dict:
    # SQLite pools reject the sizing arguments used for server databases
    if url.startswith("sqlite"):
        return {"echo": False}
    return {"echo": False, "pool_size": 5, "max_overflow": 10, "pool_pre_ping": True}


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def init_database() -> None:
    """Create any missing tables. Used for local stores without migrations."""
    from wellness.domain.orm import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        yield session
