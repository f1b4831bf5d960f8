from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine

import models
from settings import Settings


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Creates the async engine for the configured database."""
    return create_async_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Creates an async session factory bound to the engine."""
    return async_sessionmaker(bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Creates all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
