from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from bank_book.config import Settings

Base = declarative_base()


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Async engine for ``settings.database_url``; connects lazily on first use."""
    kwargs = {"echo": settings.db_echo, "future": True}
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=5, pool_pre_ping=True)
    return create_async_engine(settings.database_url, **kwargs)


def make_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False, autocommit=False
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create missing tables."""
    # models must be imported so their tables are registered on Base.metadata
    from bank_book.db import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
