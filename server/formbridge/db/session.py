from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from formbridge.core.config import get_settings
from formbridge.core.logging import get_logger
from formbridge.db.base import Base
from formbridge import models  # noqa: F401
from formbridge.services.integration_service import close_integrations

logger = get_logger(__name__)

settings = get_settings()
engine = create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def lifespan(app: object) -> AsyncIterator[None]:  # noqa: ARG001
    await init_models()
    logger.info("application.startup", environment=settings.environment)
    yield
    logger.info("application.shutdown")
    await close_integrations()
    await engine.dispose()


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session_factory() as session:
        yield session
