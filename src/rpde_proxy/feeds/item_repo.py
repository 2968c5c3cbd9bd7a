from typing import TYPE_CHECKING, Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import insert

from rpde_proxy.database.tables.items_table import Items
from rpde_proxy.feeds.rpde import LAST_PAGE_ITEM_ID, CachedItem

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession


class CachedItemRepository:
    def __init__(self, session: "AsyncSession"):
        self.session = session

    async def upsert_many(self, items: Sequence[CachedItem]) -> int:
        """Insert or update items, keeping the newest ``modified`` per id.

        The last-page sentinel always overwrites. Returns the number of rows
        actually written.
        """
        if not items:
            return 0

        values = [item.model_dump() for item in items]
        stmt = insert(Items).values(values)
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[Items.source, Items.id],
            set_={
                "modified": excluded.modified,
                "kind": excluded.kind,
                "deleted": excluded.deleted,
                "data": excluded.data,
                "expiry": excluded.expiry,
            },
            where=sa.or_(
                Items.modified < excluded.modified,
                Items.id == LAST_PAGE_ITEM_ID,
            ),
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def delete_batch(self, source: str, limit: int) -> int:
        ids = sa.select(Items.id).where(Items.source == source).limit(limit)
        stmt = sa.delete(Items).where(Items.source == source, Items.id.in_(ids))
        result = await self.session.execute(stmt)
        return result.rowcount

    async def delete_expired(self, now: "datetime") -> int:
        stmt = sa.delete(Items).where(Items.expiry.is_not(None), Items.expiry < now)
        result = await self.session.execute(stmt)
        return result.rowcount
