from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from telemetry_kit.core.config import settings
from telemetry_kit.db.models import api_token, event  # noqa: F401  registers tables
from telemetry_kit.db.models.base import BaseORM


class DataBaseHelper:

    def __init__(self, url: str = settings.db.url):
        self.url = url
        self.engine: AsyncEngine = self._create_engine(url)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
        )
        logger.info("DataBaseHelper initialized with default engine.")

    @staticmethod
    def _create_engine(url: str) -> AsyncEngine:
        if url.startswith("sqlite"):
            # single shared connection, otherwise every session sees its own in-memory db
            return create_async_engine(
                url=url,
                echo=settings.db.echo,
                poolclass=StaticPool,
            )
        return create_async_engine(
            url=url,
            echo=settings.db.echo,
            echo_pool=settings.db.echo_pool,
            pool_size=settings.db.pool_size,
            max_overflow=settings.db.max_overflow,
        )

    async def create_all(self):
        """Create missing tables"""
        async with self.engine.begin() as conn:
            await conn.run_sync(BaseORM.metadata.create_all)
        logger.info("Database schema is up to date.")

    async def dispose(self):
        await self.engine.dispose()
        logger.info("Disposed default engine.")

    def connection(self, method):
        """Decorator to automatically create session"""
        async def wrapper(*args, **kwargs):
            async with self.session_factory() as session:
                try:
                    return await method(*args, session=session, **kwargs)
                except Exception as e:
                    if session.in_transaction():
                        await session.rollback()
                    logger.error(f"Error in default session: {e}")
                    raise

        return wrapper


# Global helper
db_helper = DataBaseHelper()
