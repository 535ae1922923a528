from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import declarative_base
import logging

from . import config

logger = logging.getLogger(__name__)

Base = declarative_base()


def make_engine(url: str = None, echo: bool = None) -> AsyncEngine:
    return create_async_engine(
        url or config.DATABASE_URL,
        echo=config.DB_ECHO if echo is None else echo,
        pool_pre_ping=True,
    )


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False
    )


engine = make_engine()
AsyncSessionLocal = make_session_factory(engine)


async def init_models(bind: AsyncEngine = None):
    """Create the schema once, before the service accepts requests."""
    # models must be imported so their tables are registered on Base.metadata
    from . import models  # noqa: F401

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema is up to date")

