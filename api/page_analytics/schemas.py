from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


# ============================================================================
# BASE SCHEMAS
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok"] = "ok"
    uptime_s: float | None = None


# ============================================================================
# TRACKING
# ============================================================================


class PageViewRequest(BaseModel):
    """Request body for client-side page view tracking."""

    path: str = Field(..., max_length=2048)  # Page path (e.g., "/", "/blog/post-1")


# ============================================================================
# REPORTS
# ============================================================================


class ReportRow(BaseModel):
    path: str
    total: int
    chart_labels: list[str]
    chart_values: list[int]


class ReportResponse(BaseModel):
    """Page analytics report with pagination metadata."""

    period: int
    days: int
    granularity: Literal["day", "week", "month"]
    date_from: str
    date_to: str
    filter: str = ""
    sampling_rate: int
    estimated: bool
    page: int
    per_page: int
    total_paths: int
    has_more: bool
    rows: list[ReportRow]


# ============================================================================
# MAINTENANCE & DIAGNOSTICS
# ============================================================================


class FlushResponse(BaseModel):
    deleted_rows: int


class ExcludedPathsPreview(BaseModel):
    """Stored paths that the current exclusion rules would remove."""

    count: int
    paths: list[str]
    remaining: int = 0


class FlushExcludedResponse(BaseModel):
    removed_paths: int
    paths: list[str]


class StatusResponse(BaseModel):
    queue_name: str
    queue_items: int
    table_exists: bool
    row_count: int
    last_run: int | None = None
    last_run_display: str
    sampling_rate: int
    retention_days: int
    excluded_roles: list[str]
    excluded_paths: list[str]
    hints: list[str]


class CronRunResponse(BaseModel):
    batches: int
    claimed: int
    merged_keys: int
    malformed: int
    failed_keys: int
    deleted: int
    aborted: bool
    pruned_rows: int
