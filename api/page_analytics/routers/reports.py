"""Page analytics report endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Response

from .. import schemas
from ..auth import Principal, require_admin
from ..deps import get_report_builder
from ..services.report import ReportBuilder
from ..settings import DEFAULT_PERIOD, DEFAULT_TOP

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["Analytics"])


@router.get("/report", response_model=schemas.ReportResponse)
def get_report(
    response: Response,
    period: int = Query(DEFAULT_PERIOD, description="7, 30, 90, or 0 for the full retention window"),
    filter: str | None = Query(None, max_length=255, description="Only paths containing this text"),
    top: int = Query(DEFAULT_TOP, description="Paths per page: 30, 50, 100 or 300"),
    page: int = Query(0, ge=0),
    builder: ReportBuilder = Depends(get_report_builder),
    admin: Principal = Depends(require_admin),
) -> schemas.ReportResponse:
    """
    Top paths by estimated views, each with a chart series.

    Unknown `period`/`top` values fall back to the defaults. The chart has
    one point per day up to 30 days, one per week for 90 days, and one per
    calendar month for the full retention window.

    **Authorization:** administrator role required.
    """
    report = builder.build(period=period, path_filter=filter, top=top, page=page)

    # Reports reflect live counters; never cache
    response.headers["Cache-Control"] = "no-store, max-age=0"

    return schemas.ReportResponse(**report.to_dict())
