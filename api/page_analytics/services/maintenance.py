"""
Maintenance operations on stored analytics: flush everything, flush paths
that now match the exclusion rules, and prune rows past retention.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from ..settings import AnalyticsSettings
from ..utils.path_classifier import PathClassifier
from .daily_counters import DELETE_BATCH_SIZE, DailyCounterStore

logger = logging.getLogger(__name__)

# Max number of paths listed in a flush-excluded preview
PREVIEW_LIMIT = 200


def flush_all(store: DailyCounterStore) -> int:
    """Permanently delete all recorded counters."""
    deleted = store.truncate_all()
    logger.info(f"Flushed all page analytics data ({deleted} row(s))")
    return deleted


def find_excluded_paths(store: DailyCounterStore, classifier: PathClassifier) -> list[str]:
    """Stored paths that match the current path exclusion rules."""
    return [path for path in store.distinct_paths() if classifier.is_path_excluded(path)]


def flush_excluded(
    store: DailyCounterStore,
    classifier: PathClassifier,
    batch_size: int = DELETE_BATCH_SIZE,
) -> list[str]:
    """
    Delete counters for every stored path that the current rules exclude.

    Deletes in chunks of ``batch_size`` paths per statement.

    Returns:
        The paths that were removed
    """
    paths = find_excluded_paths(store, classifier)
    if not paths:
        logger.info("No stored page analytics paths match the exclusion rules")
        return []

    deleted = store.delete_paths(paths, batch_size=batch_size)
    logger.info(f"Removed page analytics data for {len(paths)} excluded path(s) ({deleted} row(s))")
    return paths


def retention_cutoff(today: date, retention_days: int) -> date:
    return today - timedelta(days=retention_days)


def prune_expired(store: DailyCounterStore, settings: AnalyticsSettings, today: date) -> int:
    """Delete rows dated before ``today - retention_days``."""
    cutoff = retention_cutoff(today, settings.effective_retention_days)
    deleted = store.delete_before(cutoff)
    if deleted:
        logger.info(f"Pruned {deleted} page analytics row(s) older than {cutoff.isoformat()}")
    return deleted
