from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy import BigInteger, Boolean, DateTime, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from rpde_proxy.database.tables.base_class import Base


class Items(Base):
    """Cached RPDE items, keyed by feed name and canonical item id."""

    source: Mapped[str] = mapped_column(Text, primary_key=True)
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    modified: Mapped[int] = mapped_column(BigInteger)
    kind: Mapped[str] = mapped_column(Text, server_default="")
    deleted: Mapped[bool] = mapped_column(Boolean, server_default=sa.false())
    data: Mapped[Optional[Any]] = mapped_column(JSONB, nullable=True)
    # Only set for tombstones; swept once passed
    expiry: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        sa.Index("ix_items_source_modified_id", "source", "modified", "id"),
        sa.Index(
            "ix_items_expiry",
            "expiry",
            postgresql_where=sa.text("expiry IS NOT NULL"),
        ),
    )
