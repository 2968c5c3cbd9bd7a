import contextlib
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from rpde_proxy.main.logging import get_logger

logger = get_logger(__name__)


class DatabaseNotInitialized(RuntimeError):
    pass


class DatabaseSessionManager:
    """Process-wide engine for the cache store. Sessions do not autobegin."""

    def __init__(self):
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    def init(self, url: str, pool_size: int = 20, max_overflow: int = 10):
        # Worker startup and the CLI may both call this in one process
        if self._engine is not None:
            logger.debug("Cache store engine already initialized")
            return

        self._engine = create_async_engine(
            url, pool_size=pool_size, max_overflow=max_overflow, pool_pre_ping=True
        )
        self._sessionmaker = async_sessionmaker(
            bind=self._engine,
            autobegin=False,
            expire_on_commit=False,
        )
        logger.debug("Cache store engine created", extra={"pool_size": pool_size})

    async def close(self):
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        logger.debug("Cache store engine disposed")

    @contextlib.asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self._sessionmaker is None:
            raise DatabaseNotInitialized("DatabaseSessionManager.init() has not been called")

        async with self._sessionmaker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise


sessionmanager = DatabaseSessionManager()
