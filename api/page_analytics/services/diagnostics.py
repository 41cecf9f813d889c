"""
Read-only diagnostics: why is (or isn't) page analytics data being collected?
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import AnalyticsState
from ..queue import QUEUE_NAME, ViewEventQueue
from ..settings import AUTHENTICATED_ROLE, AnalyticsSettings
from .daily_counters import DailyCounterStore

logger = logging.getLogger(__name__)

LAST_RUN_KEY = "last_run"


def get_last_run(db: Session) -> int | None:
    """Epoch seconds of the last periodic run, or None if it never ran."""
    value = db.execute(
        select(AnalyticsState.value).where(AnalyticsState.name == LAST_RUN_KEY)
    ).scalar_one_or_none()
    try:
        return int(value) if value else None
    except ValueError:
        return None


def set_last_run(db: Session, timestamp: float) -> None:
    state = db.get(AnalyticsState, LAST_RUN_KEY)
    if state is None:
        state = AnalyticsState(name=LAST_RUN_KEY)
        db.add(state)
    state.value = str(int(timestamp))
    db.commit()


def format_time_ago(timestamp: int, now: float | None = None) -> str:
    """Human-readable "time ago" for a past epoch timestamp."""
    diff = int((now if now is not None else time.time()) - timestamp)
    if diff < 60:
        return f"{diff}s ago"
    if diff < 3600:
        return f"{diff // 60}m ago"
    if diff < 86400:
        return f"{diff // 3600}h ago"
    return f"{diff // 86400}d ago"


@dataclass
class AnalyticsStatus:
    queue_name: str
    queue_items: int
    table_exists: bool
    row_count: int
    last_run: int | None
    sampling_rate: int
    retention_days: int
    excluded_roles: list[str]
    excluded_paths: list[str]
    hints: list[str] = field(default_factory=list)

    def last_run_display(self, now: float | None = None) -> str:
        if not self.last_run:
            return "never"
        stamp = datetime.fromtimestamp(self.last_run, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        return f"{stamp} ({format_time_ago(self.last_run, now)})"

    def to_dict(self) -> dict:
        return {
            "queue_name": self.queue_name,
            "queue_items": self.queue_items,
            "table_exists": self.table_exists,
            "row_count": self.row_count,
            "last_run": self.last_run,
            "last_run_display": self.last_run_display(),
            "sampling_rate": self.sampling_rate,
            "retention_days": self.retention_days,
            "excluded_roles": self.excluded_roles,
            "excluded_paths": self.excluded_paths,
            "hints": self.hints,
        }

    def render_lines(self, now: float | None = None) -> list[str]:
        """Plain-text status block for the CLI."""
        lines = [
            "",
            "Page Analytics status",
            "--------------------",
            f"Queue ({self.queue_name}):  {self.queue_items} items",
            f"Table (page_analytics_daily): {f'{self.row_count} rows' if self.table_exists else 'MISSING'}",
            f"Last run:                {self.last_run_display(now)}",
            f"Config: sampling_rate={self.sampling_rate}, retention_days={self.retention_days}, "
            f"excluded_roles={','.join(self.excluded_roles) or '(none)'}",
            "Excluded paths:",
        ]
        if self.excluded_paths:
            lines.extend(f"  {line}" for line in self.excluded_paths)
        else:
            lines.append("  (none)")
        lines.append("")
        return lines


def build_hints(status: AnalyticsStatus) -> list[str]:
    hints = []
    if status.queue_items > 0 and status.row_count == 0 and not status.last_run:
        hints.append(
            "Queue has items but the periodic task has never run. Start celery beat "
            "(or run `page-analytics process`) so the queue is processed."
        )
    elif status.queue_items > 0 and status.row_count == 0:
        hints.append(
            "Queue has items but the table is empty. The periodic task may not run often "
            "enough or the worker may be failing. Check the worker logs."
        )
    elif status.queue_items == 0 and status.row_count == 0:
        hints.append(
            "No queue items and no data. Either no eligible requests reach the app, or "
            "your role is excluded. Visit the site anonymously and check again."
        )
    if AUTHENTICATED_ROLE in status.excluded_roles:
        hints.append('"authenticated" role is excluded: logged-in visits are not counted. Test anonymously.')
    return hints


def collect_status(db: Session, settings: AnalyticsSettings) -> AnalyticsStatus:
    """Gather queue depth, row count, last run and config. Read-only."""
    store = DailyCounterStore(db)
    table_exists = store.table_exists()
    row_count = store.count_rows() if table_exists else 0

    try:
        queue_items = ViewEventQueue(db).number_of_items()
    except SQLAlchemyError as e:
        logger.warning(f"Could not count page analytics queue items: {e}")
        db.rollback()
        queue_items = 0

    try:
        last_run = get_last_run(db)
    except SQLAlchemyError as e:
        logger.warning(f"Could not read page analytics last run: {e}")
        db.rollback()
        last_run = None

    status = AnalyticsStatus(
        queue_name=QUEUE_NAME,
        queue_items=queue_items,
        table_exists=table_exists,
        row_count=row_count,
        last_run=last_run,
        sampling_rate=settings.effective_sampling_rate,
        retention_days=settings.effective_retention_days,
        excluded_roles=sorted(settings.excluded_roles),
        excluded_paths=settings.excluded_path_patterns,
    )
    status.hints = build_hints(status)
    return status
