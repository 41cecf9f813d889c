from __future__ import annotations

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)

from .db import Base


# ============================================================================
# ANALYTICS
# ============================================================================


class DailyCounter(Base):
    """Estimated page views per path and day (sampling weights already applied)."""

    __tablename__ = "page_analytics_daily"

    path = Column(String(255), primary_key=True)
    stat_date = Column(Date, primary_key=True)
    view_count = Column(BigInteger, nullable=False, default=0)

    __table_args__ = (Index("ix_page_analytics_daily_stat_date", stat_date),)

    def __repr__(self) -> str:
        return f"<DailyCounter {self.path} {self.stat_date}: {self.view_count}>"


class QueueItem(Base):
    """Raw view event waiting for aggregation.

    ``expire`` is 0 for unclaimed items, otherwise the epoch second at which
    the current lease runs out.
    """

    __tablename__ = "page_analytics_queue"

    item_id = Column(Integer, primary_key=True, autoincrement=True)
    data = Column(JSON, nullable=False)  # {"path": ..., "date": "YYYY-MM-DD", "sampling_rate": N}
    created = Column(BigInteger, nullable=False)
    expire = Column(BigInteger, nullable=False, default=0)

    __table_args__ = (Index("ix_page_analytics_queue_expire_created", expire, created),)


class AnalyticsState(Base):
    """Small key/value store for operational markers (e.g. last cron run)."""

    __tablename__ = "page_analytics_state"

    name = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
