"""
Page analytics report builder.

Ranks the top paths for a period and rebuilds a per-path time series from
the daily counters: one point per day for periods up to 30 days, one point
per calendar month for the "max" period, and 7-day windows otherwise.

Counters already hold estimated views (sampling weights are applied at
merge time), so no scaling happens here; ``sampling_rate`` is reported as
metadata only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable
from zoneinfo import ZoneInfo

from sqlalchemy.exc import OperationalError, ProgrammingError

from ..settings import (
    ALLOWED_PERIODS,
    ALLOWED_TOP,
    DEFAULT_PERIOD,
    DEFAULT_RETENTION_DAYS,
    DEFAULT_TOP,
    AnalyticsSettings,
)
from .daily_counters import DailyCounterStore

logger = logging.getLogger(__name__)

# Periods up to this many days are charted one point per day
DAILY_MAX_DAYS = 30
WEEK_DAYS = 7

LABEL_SEPARATOR = " – "


class Granularity(str, Enum):
    """Chart bucket size."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass
class ReportRow:
    path: str
    total: int
    chart_labels: list[str]
    chart_values: list[int]

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "total": self.total,
            "chart_labels": self.chart_labels,
            "chart_values": self.chart_values,
        }


@dataclass
class Report:
    """A computed report. Never persisted."""
    period: int
    days: int
    granularity: Granularity
    date_from: str
    date_to: str
    path_filter: str
    sampling_rate: int
    page: int
    per_page: int
    total_paths: int
    rows: list[ReportRow] = field(default_factory=list)

    @property
    def estimated(self) -> bool:
        return self.sampling_rate > 1

    @property
    def has_more(self) -> bool:
        return (self.page + 1) * self.per_page < self.total_paths

    def to_dict(self) -> dict:
        return {
            "period": self.period,
            "days": self.days,
            "granularity": self.granularity.value,
            "date_from": self.date_from,
            "date_to": self.date_to,
            "filter": self.path_filter,
            "sampling_rate": self.sampling_rate,
            "estimated": self.estimated,
            "page": self.page,
            "per_page": self.per_page,
            "total_paths": self.total_paths,
            "has_more": self.has_more,
            "rows": [row.to_dict() for row in self.rows],
        }


def normalize_period(period: int | None) -> int:
    """Unknown periods fall back to the default (7 days)."""
    return period if period in ALLOWED_PERIODS else DEFAULT_PERIOD


def normalize_top(top: int | None) -> int:
    return top if top in ALLOWED_TOP else DEFAULT_TOP


def effective_days(period: int, retention_days: int) -> int:
    """Window length in days; period 0 ("max") uses the retention window."""
    if period == 0:
        return retention_days if retention_days >= 1 else DEFAULT_RETENTION_DAYS
    return period


def date_labels_for(today: date, days: int) -> list[date]:
    """Every day from ``today - (days - 1)`` to ``today``, ascending."""
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def granularity_for(period: int, days: int) -> Granularity:
    if period == 0:
        return Granularity.MONTH
    if days > DAILY_MAX_DAYS:
        return Granularity.WEEK
    return Granularity.DAY


def bucket_ranges(dates: list[date], granularity: Granularity) -> list[tuple[int, int]]:
    """
    Split the date axis into contiguous ``(start_idx, end_idx)`` index ranges.

    Day: one range per date. Week: 7-day windows from the first date, the
    last window may be shorter. Month: one range per calendar month present.
    """
    if granularity == Granularity.DAY:
        return [(i, i) for i in range(len(dates))]

    if granularity == Granularity.WEEK:
        return [
            (start, min(start + WEEK_DAYS - 1, len(dates) - 1))
            for start in range(0, len(dates), WEEK_DAYS)
        ]

    ranges: list[tuple[int, int]] = []
    for idx, day in enumerate(dates):
        if ranges and (dates[ranges[-1][0]].year, dates[ranges[-1][0]].month) == (day.year, day.month):
            ranges[-1] = (ranges[-1][0], idx)
        else:
            ranges.append((idx, idx))
    return ranges


def bucket_labels(dates: list[date], ranges: list[tuple[int, int]], granularity: Granularity) -> list[str]:
    if granularity == Granularity.DAY:
        return [dates[start].isoformat() for start, _ in ranges]
    return [
        f"{dates[start].isoformat()}{LABEL_SEPARATOR}{dates[end].isoformat()}"
        for start, end in ranges
    ]


def bucket_values(values: list[int], ranges: list[tuple[int, int]]) -> list[int]:
    return [sum(values[start:end + 1]) for start, end in ranges]


class ReportBuilder:
    """Builds page analytics reports from the daily counter store."""

    def __init__(
        self,
        store: DailyCounterStore,
        settings: AnalyticsSettings,
        today: Callable[[], date] | None = None,
    ):
        self.store = store
        self.settings = settings
        self._today = today or self._local_today

    def _local_today(self) -> date:
        return datetime.now(ZoneInfo(self.settings.timezone)).date()

    def build(
        self,
        period: int | None = DEFAULT_PERIOD,
        path_filter: str | None = None,
        top: int | None = DEFAULT_TOP,
        page: int = 0,
    ) -> Report:
        """
        Build a report.

        Args:
            period: 7, 30, 90 or 0 for the full retention window
            path_filter: Optional case-insensitive substring of the path
            top: Number of ranked paths per page (30, 50, 100 or 300)
            page: Zero-based page over the ranked paths

        Returns:
            Report with rows in ranking order (empty when there is no data)
        """
        period = normalize_period(period)
        top = normalize_top(top)
        page = max(0, page or 0)
        path_filter = (path_filter or "").strip()

        days = effective_days(period, self.settings.retention_days)
        today = self._today()
        dates = date_labels_for(today, days)
        granularity = granularity_for(period, days)

        report = Report(
            period=period,
            days=days,
            granularity=granularity,
            date_from=dates[0].isoformat(),
            date_to=today.isoformat(),
            path_filter=path_filter,
            sampling_rate=self.settings.effective_sampling_rate,
            page=page,
            per_page=top,
            total_paths=0,
        )

        try:
            top_paths = self.store.sum_by_path(
                dates[0], today, path_filter=path_filter or None, limit=top, offset=page * top
            )
            report.total_paths = self.store.count_paths(dates[0], today, path_filter or None)
            if not top_paths:
                return report
            series = self.store.series_by_paths([path for path, _ in top_paths], dates[0], today)
        except (OperationalError, ProgrammingError) as e:
            # Missing or uninitialized store reads as "no data"
            logger.warning(f"Page analytics report unavailable, returning empty report: {e}")
            self.store.db.rollback()
            return report

        daily_by_path: dict[str, dict[date, int]] = {}
        for path, stat_date, count in series:
            daily_by_path.setdefault(path, {})[stat_date] = count

        ranges = bucket_ranges(dates, granularity)
        labels = bucket_labels(dates, ranges, granularity)

        for path, _ in top_paths:
            by_date = daily_by_path.get(path, {})
            values_full = [by_date.get(day, 0) for day in dates]
            chart_values = bucket_values(values_full, ranges)
            report.rows.append(
                ReportRow(
                    path=path,
                    total=sum(chart_values),
                    chart_labels=list(labels),
                    chart_values=chart_values,
                )
            )

        return report
