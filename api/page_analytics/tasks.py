from __future__ import annotations

import logging
import os
from typing import Any

from celery import Celery

logger = logging.getLogger(__name__)

DEFAULT_REDIS = "redis://cache:6379/0"

celery_app = Celery(
    "page_analytics",
    broker=os.getenv("CELERY_BROKER_URL", DEFAULT_REDIS),
    backend=os.getenv("CELERY_RESULT_BACKEND", DEFAULT_REDIS),
)

celery_app.conf.update(
    task_default_queue="default",
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=3600,
    worker_max_tasks_per_child=100,
    task_routes={"page_analytics.tasks.run_analytics_cron": {"queue": "default"}},
    beat_schedule={
        "page-analytics-cron": {
            "task": "page_analytics.tasks.run_analytics_cron",
            "schedule": float(os.getenv("PAGE_ANALYTICS_CRON_INTERVAL", "60")),
        },
    },
    timezone="UTC",
)


@celery_app.task(name="page_analytics.tasks.run_analytics_cron", bind=True)
def run_analytics_cron(self) -> dict[str, Any]:
    """
    Periodic task: drain the page view queue into daily counters and prune
    rows past retention. Runs every minute (configurable via beat_schedule).
    """
    from .db import SessionLocal
    from .deps import get_settings
    from .services.cron import run_analytics_cron as run_cron

    db = SessionLocal()
    try:
        result = run_cron(db, get_settings())
        logger.info(
            "Page analytics cron completed: %d item(s) claimed, %d merge(s), %d row(s) pruned",
            result.drain.claimed,
            result.drain.merged_keys,
            result.pruned_rows,
        )
        return {"status": "success", **result.to_dict()}

    except Exception as e:
        logger.error("Error in page analytics cron: %s", str(e))
        return {"status": "error", "message": str(e)}
    finally:
        db.close()


@celery_app.task(name="page_analytics.tasks.process_view_batch", bind=True)
def process_view_batch(self) -> dict[str, Any]:
    """Process a single batch of queued page views."""
    from .db import SessionLocal
    from .deps import get_settings
    from .queue import ViewEventQueue
    from .services.aggregation import AggregationWorker
    from .services.daily_counters import DailyCounterStore

    settings = get_settings()
    db = SessionLocal()
    try:
        worker = AggregationWorker(
            ViewEventQueue(db),
            DailyCounterStore(db),
            batch_size=settings.batch_size,
            lease_seconds=settings.lease_seconds,
        )
        return {"status": "success", **worker.process().to_dict()}
    finally:
        db.close()
