"""Cache store facade over the PostgreSQL item and feed tables.

Every call runs in its own short transaction. SQLAlchemy failures are
re-raised as ``StoreTransientError`` or ``StoreWriteError`` so the retry
policy sees one of its categories.
"""

import contextlib
from datetime import datetime
from typing import AsyncIterator, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rpde_proxy.database.database import DatabaseSessionManager, sessionmanager
from rpde_proxy.feeds.feed_repo import RegisteredFeed, RegisteredFeedRepository
from rpde_proxy.feeds.item_repo import CachedItemRepository
from rpde_proxy.feeds.retry_policy import classify_store_error
from rpde_proxy.feeds.rpde import CachedItem
from rpde_proxy.main.logging import get_logger

logger = get_logger(__name__)


class CacheStore:
    def __init__(
        self,
        session_manager: DatabaseSessionManager = sessionmanager,
        retry_after_seconds: int | None = None,
    ):
        self._session_manager = session_manager
        self._retry_after_seconds = retry_after_seconds

    @contextlib.asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_manager.session() as session, session.begin():
                yield session
        except SQLAlchemyError as exc:
            raise classify_store_error(exc, self._retry_after_seconds) from exc

    async def batch_upsert_items(self, rows: Sequence[CachedItem]) -> int:
        async with self._transaction() as session:
            return await CachedItemRepository(session).upsert_many(rows)

    async def delete_items_batch(self, source: str, limit: int) -> int:
        async with self._transaction() as session:
            return await CachedItemRepository(session).delete_batch(source, limit)

    async def prune_expired_items(self, now: datetime) -> int:
        async with self._transaction() as session:
            deleted = await CachedItemRepository(session).delete_expired(now)
        if deleted:
            logger.info("Pruned expired tombstones", extra={"deleted": deleted})
        return deleted

    async def save_feed_record(self, record: RegisteredFeed) -> None:
        async with self._transaction() as session:
            await RegisteredFeedRepository(session).save(record)

    async def delete_feed_record(self, name: str) -> None:
        async with self._transaction() as session:
            await RegisteredFeedRepository(session).delete(name)

    async def query_feed_records(self) -> list[RegisteredFeed]:
        async with self._transaction() as session:
            return await RegisteredFeedRepository(session).get_all()
