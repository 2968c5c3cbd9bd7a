from typing import Any, Optional

from sqlalchemy import Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from rpde_proxy.database.tables.base_class import Base, TimestampMixin


class Feeds(TimestampMixin, Base):
    """Durable registry of every feed the proxy is responsible for."""

    name: Mapped[str] = mapped_column(Text, primary_key=True)
    url: Mapped[str] = mapped_column(Text)
    dataset_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # FeedState snapshot used to re-inject the feed if its message is lost
    initial_feed_state: Mapped[dict[str, Any]] = mapped_column(JSONB)
