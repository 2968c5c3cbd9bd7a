from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

import sqlalchemy as sa
from pydantic import BaseModel, ConfigDict
from sqlalchemy.dialects.postgresql import insert

from rpde_proxy.database.tables.feeds_table import Feeds

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


class RegisteredFeed(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    url: str
    dataset_url: Optional[str] = None
    initial_feed_state: dict[str, Any]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RegisteredFeedRepository:
    def __init__(self, session: "AsyncSession"):
        self.session = session

    async def save(self, feed: RegisteredFeed) -> None:
        stmt = insert(Feeds).values(
            name=feed.name,
            url=feed.url,
            dataset_url=feed.dataset_url,
            initial_feed_state=feed.initial_feed_state,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Feeds.name],
            set_={
                "url": stmt.excluded.url,
                "dataset_url": stmt.excluded.dataset_url,
                "initial_feed_state": stmt.excluded.initial_feed_state,
                "updated_at": sa.func.now(),
            },
        )
        await self.session.execute(stmt)

    async def get_all(self) -> list[RegisteredFeed]:
        records = await self.session.scalars(sa.select(Feeds).order_by(Feeds.name))
        return [RegisteredFeed.model_validate(record) for record in records]

    async def delete(self, name: str) -> None:
        await self.session.execute(sa.delete(Feeds).where(Feeds.name == name))
