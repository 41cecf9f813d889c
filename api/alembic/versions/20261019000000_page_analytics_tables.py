"""add page analytics tables

Revision ID: 20261019000000
Revises:
Create Date: 2026-10-19 00:00:00.000000

This migration adds the page analytics tables:
- page_analytics_daily: Estimated views per path and day (retention-pruned)
- page_analytics_queue: Raw view events waiting for aggregation
- page_analytics_state: Operational markers (last cron run)
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "20261019000000"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ========================================================================
    # DAILY COUNTERS - one row per (path, date), additive merges only
    # ========================================================================

    op.create_table(
        "page_analytics_daily",
        sa.Column("path", sa.String(255), nullable=False),
        sa.Column("stat_date", sa.Date(), nullable=False),
        sa.Column("view_count", sa.BigInteger(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("path", "stat_date", name="pk_page_analytics_daily"),
    )
    op.create_index("ix_page_analytics_daily_stat_date", "page_analytics_daily", ["stat_date"])

    # ========================================================================
    # QUEUE - leased at-least-once delivery (expire = 0 means unclaimed)
    # ========================================================================

    op.create_table(
        "page_analytics_queue",
        sa.Column("item_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("data", sa.JSON(), nullable=False),  # {"path", "date", "sampling_rate"}
        sa.Column("created", sa.BigInteger(), nullable=False),
        sa.Column("expire", sa.BigInteger(), nullable=False, server_default="0"),
    )
    op.create_index(
        "ix_page_analytics_queue_expire_created", "page_analytics_queue", ["expire", "created"]
    )

    # ========================================================================
    # STATE - small key/value store
    # ========================================================================

    op.create_table(
        "page_analytics_state",
        sa.Column("name", sa.String(100), primary_key=True),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )


def downgrade() -> None:
    op.drop_table("page_analytics_state")
    op.drop_index("ix_page_analytics_queue_expire_created", table_name="page_analytics_queue")
    op.drop_table("page_analytics_queue")
    op.drop_index("ix_page_analytics_daily_stat_date", table_name="page_analytics_daily")
    op.drop_table("page_analytics_daily")
