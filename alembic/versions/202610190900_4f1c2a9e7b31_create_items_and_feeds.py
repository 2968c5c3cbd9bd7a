"""create_items_and_feeds

Creates the cached item table and the durable feed registry.

Indexes created:
- (source, modified, id) for cursor ordered reads of a feed
- partial index on expiry for tombstone pruning

Revision ID: 4f1c2a9e7b31
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op


# revision identifiers, used by Alembic
revision = '4f1c2a9e7b31'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "items",
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("modified", sa.BigInteger(), nullable=False),
        sa.Column("kind", sa.Text(), server_default="", nullable=False),
        sa.Column("deleted", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("expiry", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("source", "id", name="pk_items"),
    )
    op.create_index(
        "ix_items_source_modified_id", "items", ["source", "modified", "id"]
    )
    op.create_index(
        "ix_items_expiry",
        "items",
        ["expiry"],
        postgresql_where=sa.text("expiry IS NOT NULL"),
    )

    op.create_table(
        "feeds",
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("dataset_url", sa.Text(), nullable=True),
        sa.Column(
            "initial_feed_state",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("name", name="pk_feeds"),
    )


def downgrade() -> None:
    op.drop_table("feeds")
    op.drop_index("ix_items_expiry", table_name="items")
    op.drop_index("ix_items_source_modified_id", table_name="items")
    op.drop_table("items")
