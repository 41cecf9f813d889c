"""
Periodic analytics run: drain the view queue, prune expired rows, stamp
the last-run time. Shared by the Celery beat task, the admin endpoint and
the CLI.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..queue import ViewEventQueue
from ..settings import AnalyticsSettings
from .aggregation import AggregationWorker, DrainResult
from .daily_counters import DailyCounterStore
from .diagnostics import set_last_run
from .maintenance import prune_expired

logger = logging.getLogger(__name__)


@dataclass
class CronResult:
    drain: DrainResult
    pruned_rows: int

    def to_dict(self) -> dict:
        return {**self.drain.to_dict(), "pruned_rows": self.pruned_rows}


def run_analytics_cron(
    db: Session,
    settings: AnalyticsSettings,
    today: date | None = None,
    now: Callable[[], float] = time.time,
) -> CronResult:
    """
    One periodic run.

    Retention pruning runs even when the queue drain aborts, and vice versa;
    failures are logged and left for the next run.
    """
    if today is None:
        today = datetime.now(ZoneInfo(settings.timezone)).date()

    store = DailyCounterStore(db)
    worker = AggregationWorker(
        ViewEventQueue(db, now=now),
        store,
        batch_size=settings.batch_size,
        lease_seconds=settings.lease_seconds,
    )

    set_last_run(db, now())
    drain = worker.drain(time_limit=settings.cron_time_limit)

    pruned = 0
    try:
        pruned = prune_expired(store, settings, today)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Page analytics retention pruning failed: {e}")

    return CronResult(drain=drain, pruned_rows=pruned)
