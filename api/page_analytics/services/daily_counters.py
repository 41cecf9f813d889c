"""
Daily counter store.

Persistent ``(path, date) -> view_count`` counters. Counts are estimated
views: sampling weights are applied when events are merged, never at read
time.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Sequence

from sqlalchemy import delete, func, inspect, select
from sqlalchemy.orm import Session

from ..models import DailyCounter

logger = logging.getLogger(__name__)

# Max number of paths per DELETE ... IN (...) statement
DELETE_BATCH_SIZE = 500


def escape_like(value: str, escape_char: str = "\\") -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return (
        value.replace(escape_char, escape_char * 2)
        .replace("%", escape_char + "%")
        .replace("_", escape_char + "_")
    )


def build_upsert(dialect_name: str, path: str, stat_date: date, increment: int):
    """
    Build the dialect-specific add-or-create statement for one counter.

    PostgreSQL and SQLite use ``ON CONFLICT DO UPDATE``; MySQL and MariaDB use
    ``ON DUPLICATE KEY UPDATE``.

    Raises:
        NotImplementedError: for databases without an atomic upsert
    """
    if dialect_name in ("postgresql", "sqlite"):
        from sqlalchemy.dialects import postgresql, sqlite

        insert = postgresql.insert if dialect_name == "postgresql" else sqlite.insert
        stmt = insert(DailyCounter).values(path=path, stat_date=stat_date, view_count=increment)
        return stmt.on_conflict_do_update(
            index_elements=[DailyCounter.path, DailyCounter.stat_date],
            set_={"view_count": DailyCounter.view_count + stmt.excluded.view_count},
        )

    if dialect_name in ("mysql", "mariadb"):
        from sqlalchemy.dialects.mysql import insert

        stmt = insert(DailyCounter).values(path=path, stat_date=stat_date, view_count=increment)
        return stmt.on_duplicate_key_update(view_count=DailyCounter.view_count + stmt.inserted.view_count)

    raise NotImplementedError(
        f"Page analytics needs an atomic upsert; database {dialect_name!r} is not supported. "
        "Use PostgreSQL, MySQL/MariaDB or SQLite."
    )


class DailyCounterStore:
    """Read/write access to ``page_analytics_daily``."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_add(self, path: str, stat_date: date, increment: int) -> None:
        """
        Add ``increment`` to the counter, creating it if missing.

        Single upsert statement, atomic per key even with concurrent
        workers. Does not commit.
        """
        dialect_name = self.db.get_bind().dialect.name
        self.db.execute(build_upsert(dialect_name, path, stat_date, increment))

    def delete_paths(self, paths: Sequence[str], batch_size: int = DELETE_BATCH_SIZE) -> int:
        """Delete all rows for the given paths, in bounded chunks. Commits per chunk."""
        deleted = 0
        for start in range(0, len(paths), batch_size):
            chunk = list(paths[start:start + batch_size])
            result = self.db.execute(delete(DailyCounter).where(DailyCounter.path.in_(chunk)))
            self.db.commit()
            deleted += result.rowcount
        return deleted

    def delete_before(self, cutoff: date) -> int:
        """Delete rows dated strictly before ``cutoff``."""
        result = self.db.execute(delete(DailyCounter).where(DailyCounter.stat_date < cutoff))
        self.db.commit()
        return result.rowcount

    def truncate_all(self) -> int:
        result = self.db.execute(delete(DailyCounter))
        self.db.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _path_filter_clause(self, path_filter: str):
        pattern = f"%{escape_like(path_filter)}%"
        return func.lower(DailyCounter.path).like(pattern.lower(), escape="\\")

    def sum_by_path(
        self,
        date_from: date,
        date_to: date,
        path_filter: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[tuple[str, int]]:
        """
        Total views per path over ``[date_from, date_to]``, highest first.

        Args:
            path_filter: Optional case-insensitive substring the path must contain
            limit: Max number of paths to return
            offset: Number of ranked paths to skip
        """
        total = func.sum(DailyCounter.view_count).label("total")
        stmt = (
            select(DailyCounter.path, total)
            .where(DailyCounter.stat_date >= date_from, DailyCounter.stat_date <= date_to)
            .group_by(DailyCounter.path)
            .order_by(total.desc(), DailyCounter.path.asc())
        )
        if path_filter:
            stmt = stmt.where(self._path_filter_clause(path_filter))
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        return [(path, int(total or 0)) for path, total in self.db.execute(stmt).all()]

    def count_paths(self, date_from: date, date_to: date, path_filter: str | None = None) -> int:
        """Number of distinct paths with data in the range (for pagination)."""
        stmt = select(func.count(func.distinct(DailyCounter.path))).where(
            DailyCounter.stat_date >= date_from, DailyCounter.stat_date <= date_to
        )
        if path_filter:
            stmt = stmt.where(self._path_filter_clause(path_filter))
        return self.db.execute(stmt).scalar_one()

    def series_by_paths(
        self, paths: Iterable[str], date_from: date, date_to: date
    ) -> list[tuple[str, date, int]]:
        """Daily rows for the given paths, oldest first."""
        paths = list(paths)
        if not paths:
            return []
        stmt = (
            select(DailyCounter.path, DailyCounter.stat_date, DailyCounter.view_count)
            .where(
                DailyCounter.path.in_(paths),
                DailyCounter.stat_date >= date_from,
                DailyCounter.stat_date <= date_to,
            )
            .order_by(DailyCounter.stat_date.asc(), DailyCounter.path.asc())
        )
        return [(path, stat_date, int(count)) for path, stat_date, count in self.db.execute(stmt).all()]

    def get_count(self, path: str, stat_date: date) -> int:
        row = self.db.get(DailyCounter, (path, stat_date))
        return int(row.view_count) if row else 0

    def distinct_paths(self) -> list[str]:
        stmt = select(DailyCounter.path).distinct().order_by(DailyCounter.path)
        return list(self.db.execute(stmt).scalars().all())

    def count_rows(self) -> int:
        return self.db.execute(select(func.count()).select_from(DailyCounter)).scalar_one()

    def table_exists(self) -> bool:
        return inspect(self.db.get_bind()).has_table(DailyCounter.__tablename__)
