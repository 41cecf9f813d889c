"""Page analytics maintenance and diagnostics endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import Principal, require_admin
from ..deps import get_classifier, get_db, get_settings, get_store
from ..services.cron import run_analytics_cron
from ..services.daily_counters import DailyCounterStore
from ..services.diagnostics import collect_status
from ..services.maintenance import PREVIEW_LIMIT, find_excluded_paths, flush_all, flush_excluded
from ..settings import AnalyticsSettings
from ..utils.path_classifier import PathClassifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["Analytics Admin"])


@router.post("/flush", response_model=schemas.FlushResponse)
def flush_all_analytics(
    store: DailyCounterStore = Depends(get_store),
    admin: Principal = Depends(require_admin),
) -> schemas.FlushResponse:
    """
    Permanently delete all recorded page analytics data (administrator only).
    """
    deleted = flush_all(store)
    logger.info(f"Page analytics flushed by {admin.user_id}")
    return schemas.FlushResponse(deleted_rows=deleted)


@router.get("/flush-excluded", response_model=schemas.ExcludedPathsPreview)
def preview_flush_excluded(
    store: DailyCounterStore = Depends(get_store),
    classifier: PathClassifier = Depends(get_classifier),
    admin: Principal = Depends(require_admin),
) -> schemas.ExcludedPathsPreview:
    """
    List stored paths that match the current exclusion rules (administrator only).

    Shows at most 200 paths; `remaining` counts the rest.
    """
    paths = find_excluded_paths(store, classifier)
    shown = paths[:PREVIEW_LIMIT]
    return schemas.ExcludedPathsPreview(
        count=len(paths),
        paths=shown,
        remaining=len(paths) - len(shown),
    )


@router.post("/flush-excluded", response_model=schemas.FlushExcludedResponse)
def flush_excluded_analytics(
    store: DailyCounterStore = Depends(get_store),
    classifier: PathClassifier = Depends(get_classifier),
    admin: Principal = Depends(require_admin),
) -> schemas.FlushExcludedResponse:
    """
    Remove analytics data for stored paths that the current rules exclude (administrator only).
    """
    removed = flush_excluded(store, classifier)
    return schemas.FlushExcludedResponse(removed_paths=len(removed), paths=removed[:PREVIEW_LIMIT])


@router.get("/status", response_model=schemas.StatusResponse)
def get_status(
    db: Session = Depends(get_db),
    settings: AnalyticsSettings = Depends(get_settings),
    admin: Principal = Depends(require_admin),
) -> schemas.StatusResponse:
    """
    Queue depth, row count, last run and config summary (administrator only).
    """
    return schemas.StatusResponse(**collect_status(db, settings).to_dict())


@router.post("/run", response_model=schemas.CronRunResponse)
def run_now(
    db: Session = Depends(get_db),
    settings: AnalyticsSettings = Depends(get_settings),
    admin: Principal = Depends(require_admin),
) -> schemas.CronRunResponse:
    """
    Process the view queue and prune expired rows immediately (administrator only).
    """
    result = run_analytics_cron(db, settings)
    return schemas.CronRunResponse(**result.to_dict())
