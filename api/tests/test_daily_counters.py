"""Test the daily counter store."""

from datetime import date, timedelta

import pytest
from sqlalchemy.dialects import mysql, postgresql

from page_analytics.services.daily_counters import DailyCounterStore, build_upsert, escape_like

DAY = date(2026, 10, 19)


def _seed(store: DailyCounterStore, rows) -> None:
    for path, stat_date, count in rows:
        store.upsert_add(path, stat_date, count)
    store.db.commit()


class TestUpsertAdd:
    def test_creates_counter(self, store: DailyCounterStore):
        _seed(store, [("/a", DAY, 3)])
        assert store.get_count("/a", DAY) == 3

    def test_adds_to_existing_counter(self, store: DailyCounterStore):
        _seed(store, [("/a", DAY, 3), ("/a", DAY, 4)])
        assert store.get_count("/a", DAY) == 7
        assert store.count_rows() == 1

    def test_duplicate_delivery_counts_twice(self, store: DailyCounterStore):
        """Replaying the same merge adds its weight again."""
        _seed(store, [("/a", DAY, 5)])
        _seed(store, [("/a", DAY, 5)])
        assert store.get_count("/a", DAY) == 10

    def test_keys_are_independent(self, store: DailyCounterStore):
        _seed(store, [("/a", DAY, 1), ("/a", DAY - timedelta(days=1), 2), ("/b", DAY, 3)])
        assert store.get_count("/a", DAY) == 1
        assert store.get_count("/a", DAY - timedelta(days=1)) == 2
        assert store.get_count("/b", DAY) == 3

    def test_missing_counter_is_zero(self, store: DailyCounterStore):
        assert store.get_count("/nothing", DAY) == 0


class TestBuildUpsert:
    def test_postgresql_uses_on_conflict(self):
        sql = str(build_upsert("postgresql", "/a", DAY, 1).compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT" in sql
        assert "view_count + excluded.view_count" in sql

    def test_mysql_uses_on_duplicate_key(self):
        sql = str(build_upsert("mysql", "/a", DAY, 1).compile(dialect=mysql.dialect()))
        assert "ON DUPLICATE KEY UPDATE" in sql

    def test_mariadb_uses_on_duplicate_key(self):
        sql = str(build_upsert("mariadb", "/a", DAY, 1).compile(dialect=mysql.dialect()))
        assert "ON DUPLICATE KEY UPDATE" in sql

    def test_unsupported_database(self):
        with pytest.raises(NotImplementedError, match="oracle"):
            build_upsert("oracle", "/a", DAY, 1)


class TestSumByPath:
    def test_ranks_by_total_then_path(self, store: DailyCounterStore):
        _seed(
            store,
            [
                ("/b", DAY, 5),
                ("/a", DAY, 5),
                ("/c", DAY, 9),
                ("/c", DAY - timedelta(days=1), 1),
            ],
        )
        ranked = store.sum_by_path(DAY - timedelta(days=6), DAY)
        assert ranked == [("/c", 10), ("/a", 5), ("/b", 5)]

    def test_excludes_dates_outside_range(self, store: DailyCounterStore):
        _seed(store, [("/a", DAY, 1), ("/a", DAY - timedelta(days=10), 100)])
        assert store.sum_by_path(DAY - timedelta(days=6), DAY) == [("/a", 1)]

    def test_limit_and_offset(self, store: DailyCounterStore):
        _seed(store, [(f"/p{i}", DAY, 10 - i) for i in range(5)])
        assert store.sum_by_path(DAY, DAY, limit=2) == [("/p0", 10), ("/p1", 9)]
        assert store.sum_by_path(DAY, DAY, limit=2, offset=2) == [("/p2", 8), ("/p3", 7)]

    def test_filter_is_case_insensitive_substring(self, store: DailyCounterStore):
        _seed(store, [("/Blog/Post-1", DAY, 2), ("/about", DAY, 1)])
        assert store.sum_by_path(DAY, DAY, path_filter="blog") == [("/Blog/Post-1", 2)]

    def test_filter_wildcards_match_literally(self, store: DailyCounterStore):
        _seed(store, [("/100%_off", DAY, 1), ("/100x-off", DAY, 1)])
        assert store.sum_by_path(DAY, DAY, path_filter="%_") == [("/100%_off", 1)]

    def test_count_paths(self, store: DailyCounterStore):
        _seed(store, [("/a", DAY, 1), ("/a", DAY - timedelta(days=1), 1), ("/b", DAY, 1)])
        assert store.count_paths(DAY - timedelta(days=1), DAY) == 2
        assert store.count_paths(DAY, DAY, path_filter="b") == 1


class TestSeries:
    def test_series_oldest_first(self, store: DailyCounterStore):
        yesterday = DAY - timedelta(days=1)
        _seed(store, [("/a", DAY, 2), ("/a", yesterday, 1), ("/b", DAY, 7)])

        series = store.series_by_paths(["/a"], yesterday, DAY)

        assert series == [("/a", yesterday, 1), ("/a", DAY, 2)]

    def test_no_paths(self, store: DailyCounterStore):
        assert store.series_by_paths([], DAY, DAY) == []


class TestDeletes:
    def test_delete_paths_in_chunks(self, store: DailyCounterStore):
        _seed(store, [(f"/p{i}", DAY, 1) for i in range(7)] + [("/keep", DAY, 1)])

        deleted = store.delete_paths([f"/p{i}" for i in range(7)], batch_size=3)

        assert deleted == 7
        assert store.distinct_paths() == ["/keep"]

    def test_delete_before_is_strict(self, store: DailyCounterStore):
        cutoff = DAY - timedelta(days=5)
        _seed(
            store,
            [
                ("/a", cutoff - timedelta(days=1), 1),
                ("/a", cutoff, 1),
                ("/a", DAY, 1),
            ],
        )

        assert store.delete_before(cutoff) == 1
        assert store.count_rows() == 2

    def test_truncate_all(self, store: DailyCounterStore):
        _seed(store, [("/a", DAY, 1), ("/b", DAY, 1)])
        assert store.truncate_all() == 2
        assert store.count_rows() == 0

    def test_table_exists(self, store: DailyCounterStore):
        assert store.table_exists() is True


def test_escape_like():
    assert escape_like("50%_off\\") == "50\\%\\_off\\\\"
