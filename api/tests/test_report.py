"""Test report building and chart bucketing."""

from datetime import date, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from page_analytics.services.daily_counters import DailyCounterStore
from page_analytics.services.report import (
    Granularity,
    ReportBuilder,
    bucket_ranges,
    date_labels_for,
    granularity_for,
    normalize_period,
    normalize_top,
)
from page_analytics.settings import AnalyticsSettings

TODAY = date(2026, 10, 19)


def _builder(store: DailyCounterStore, **overrides) -> ReportBuilder:
    settings = AnalyticsSettings(**{"sampling_rate": 1, "retention_days": 365, **overrides})
    return ReportBuilder(store, settings, today=lambda: TODAY)


def _seed(store: DailyCounterStore, rows) -> None:
    for path, stat_date, count in rows:
        store.upsert_add(path, stat_date, count)
    store.db.commit()


class TestHelpers:
    def test_normalize_period(self):
        assert normalize_period(30) == 30
        assert normalize_period(0) == 0
        assert normalize_period(14) == 7
        assert normalize_period(None) == 7

    def test_normalize_top(self):
        assert normalize_top(100) == 100
        assert normalize_top(25) == 30

    def test_date_labels_ascending_and_end_today(self):
        labels = date_labels_for(TODAY, 7)
        assert len(labels) == 7
        assert labels[0] == TODAY - timedelta(days=6)
        assert labels[-1] == TODAY

    def test_granularity(self):
        assert granularity_for(7, 7) == Granularity.DAY
        assert granularity_for(30, 30) == Granularity.DAY
        assert granularity_for(90, 90) == Granularity.WEEK
        assert granularity_for(0, 365) == Granularity.MONTH

    def test_week_ranges_last_bucket_shorter(self):
        dates = date_labels_for(TODAY, 90)
        ranges = bucket_ranges(dates, Granularity.WEEK)
        assert len(ranges) == 13
        assert ranges[0] == (0, 6)
        assert ranges[-1] == (84, 89)

    def test_month_ranges_follow_calendar(self):
        dates = date_labels_for(date(2026, 3, 15), 90)
        ranges = bucket_ranges(dates, Granularity.MONTH)
        months = {(day.year, day.month) for day in dates}
        assert len(ranges) == len(months)
        for start, end in ranges:
            assert (dates[start].year, dates[start].month) == (dates[end].year, dates[end].month)


class TestBuild:
    def test_empty_store(self, store: DailyCounterStore):
        report = _builder(store).build(period=7)

        assert report.rows == []
        assert report.total_paths == 0
        assert report.has_more is False
        assert report.date_to == TODAY.isoformat()

    def test_single_day_in_thirty_day_window(self, store: DailyCounterStore):
        _seed(store, [("/a", TODAY - timedelta(days=19), 5)])

        report = _builder(store).build(period=30)

        assert report.granularity == Granularity.DAY
        assert len(report.rows) == 1
        row = report.rows[0]
        assert row.total == 5
        assert len(row.chart_values) == 30
        assert sum(row.chart_values) == 5
        assert row.chart_labels[0] == (TODAY - timedelta(days=29)).isoformat()
        assert row.chart_labels[-1] == TODAY.isoformat()

    def test_total_matches_chart(self, store: DailyCounterStore):
        _seed(
            store,
            [
                ("/a", TODAY, 3),
                ("/a", TODAY - timedelta(days=2), 4),
                ("/b", TODAY - timedelta(days=1), 2),
                ("/a", TODAY - timedelta(days=40), 100),
            ],
        )

        report = _builder(store).build(period=7)

        assert [(row.path, row.total) for row in report.rows] == [("/a", 7), ("/b", 2)]
        for row in report.rows:
            assert row.total == sum(row.chart_values)

    def test_weekly_buckets_for_ninety_days(self, store: DailyCounterStore):
        _seed(store, [("/a", TODAY, 1), ("/a", TODAY - timedelta(days=89), 2), ("/a", TODAY - timedelta(days=45), 3)])

        report = _builder(store).build(period=90)

        assert report.granularity == Granularity.WEEK
        row = report.rows[0]
        assert len(row.chart_values) == 13
        assert row.chart_values[0] == 2
        assert row.chart_values[-1] == 1
        assert row.total == 6
        assert " – " in row.chart_labels[0]

    def test_monthly_buckets_for_max_period(self, store: DailyCounterStore):
        _seed(store, [("/a", TODAY, 1), ("/a", TODAY - timedelta(days=60), 2)])

        report = _builder(store, retention_days=90).build(period=0)

        dates = date_labels_for(TODAY, 90)
        months = sorted({(day.year, day.month) for day in dates})
        row = report.rows[0]
        assert report.granularity == Granularity.MONTH
        assert report.days == 90
        assert len(row.chart_values) == len(months)
        assert row.total == 3
        assert row.chart_labels[-1].endswith(TODAY.isoformat())

    def test_invalid_period_falls_back_to_seven(self, store: DailyCounterStore):
        report = _builder(store).build(period=12)
        assert report.period == 7
        assert report.days == 7

    def test_filter(self, store: DailyCounterStore):
        _seed(store, [("/blog/one", TODAY, 2), ("/about", TODAY, 9)])

        report = _builder(store).build(period=7, path_filter="BLOG")

        assert [row.path for row in report.rows] == ["/blog/one"]
        assert report.path_filter == "BLOG"

    def test_pagination(self, store: DailyCounterStore):
        _seed(store, [(f"/p{i:02d}", TODAY, 100 - i) for i in range(35)])
        builder = _builder(store)

        first = builder.build(period=7, top=30, page=0)
        second = builder.build(period=7, top=30, page=1)

        assert len(first.rows) == 30
        assert first.total_paths == 35
        assert first.has_more is True
        assert [row.path for row in second.rows] == [f"/p{i:02d}" for i in range(30, 35)]
        assert second.has_more is False

    def test_page_past_the_end_keeps_total(self, store: DailyCounterStore):
        _seed(store, [(f"/p{i:02d}", TODAY, 100 - i) for i in range(35)])

        report = _builder(store).build(period=7, top=30, page=5)

        assert report.rows == []
        assert report.total_paths == 35
        assert report.has_more is False

    def test_sampling_metadata_only(self, store: DailyCounterStore):
        _seed(store, [("/a", TODAY, 9)])

        report = _builder(store, sampling_rate=3).build(period=7)

        assert report.sampling_rate == 3
        assert report.estimated is True
        assert report.rows[0].total == 9

    def test_store_failure_reads_as_empty(self, store: DailyCounterStore, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("no such table"))

        monkeypatch.setattr(store, "sum_by_path", broken)

        report = _builder(store).build(period=7)

        assert report.rows == []

    def test_to_dict(self, store: DailyCounterStore):
        _seed(store, [("/a", TODAY, 1)])
        data = _builder(store).build(period=7, path_filter="a").to_dict()

        assert data["granularity"] == "day"
        assert data["filter"] == "a"
        assert data["rows"][0]["path"] == "/a"
        assert data["estimated"] is False


@pytest.mark.parametrize("period,expected_points", [(7, 7), (30, 30), (90, 13)])
def test_chart_point_count(store: DailyCounterStore, period, expected_points):
    _seed(store, [("/a", TODAY, 1)])
    report = _builder(store).build(period=period)
    assert len(report.rows[0].chart_labels) == expected_points
