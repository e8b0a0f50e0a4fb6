from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from fastapi import Request

from calendar_holds.core.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for the configured database."""
    return create_async_engine(
        settings.async_database_url,
        echo=settings.database_echo,
        future=True
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    # Create session factory
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


# Base class for models
Base = declarative_base()


# Dependency for FastAPI
async def get_db(request: Request):
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
