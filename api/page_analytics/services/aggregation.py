"""
Aggregation worker.

Drains a bounded batch of queued view events, sums their weights per
``(path, date)`` in memory and applies one atomic add-or-create merge per
key. Merges are additive, so a redelivered duplicate over-counts by its
weight but never corrupts a counter.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from ..queue import ClaimedItem, ViewEventQueue
from ..settings import MAX_PATH_LENGTH
from .daily_counters import DailyCounterStore

logger = logging.getLogger(__name__)

BATCH_SIZE = 100
LEASE_SECONDS = 60

AggregateKey = tuple[str, date]


@dataclass
class BatchResult:
    """Outcome of one worker invocation."""
    claimed: int = 0
    merged_keys: int = 0
    malformed: int = 0
    failed_keys: int = 0
    deleted: int = 0
    aborted: bool = False

    def to_dict(self) -> dict:
        return {
            "claimed": self.claimed,
            "merged_keys": self.merged_keys,
            "malformed": self.malformed,
            "failed_keys": self.failed_keys,
            "deleted": self.deleted,
            "aborted": self.aborted,
        }


@dataclass
class DrainResult:
    batches: int = 0
    claimed: int = 0
    merged_keys: int = 0
    malformed: int = 0
    failed_keys: int = 0
    deleted: int = 0
    aborted: bool = False

    def add(self, batch: BatchResult) -> None:
        self.batches += 1
        self.claimed += batch.claimed
        self.merged_keys += batch.merged_keys
        self.malformed += batch.malformed
        self.failed_keys += batch.failed_keys
        self.deleted += batch.deleted
        self.aborted = self.aborted or batch.aborted

    def to_dict(self) -> dict:
        return {
            "batches": self.batches,
            "claimed": self.claimed,
            "merged_keys": self.merged_keys,
            "malformed": self.malformed,
            "failed_keys": self.failed_keys,
            "deleted": self.deleted,
            "aborted": self.aborted,
        }


def parse_item(data: Any) -> tuple[AggregateKey, int] | None:
    """
    Validate a queued payload and extract its aggregation key and weight.

    Returns None for malformed payloads (missing or non-string path/date,
    or a date that is not ISO ``YYYY-MM-DD``).
    """
    if not isinstance(data, dict):
        return None
    path = data.get("path")
    raw_date = data.get("date")
    if not isinstance(path, str) or not isinstance(raw_date, str):
        return None
    try:
        stat_date = date.fromisoformat(raw_date)
    except ValueError:
        return None

    if len(path) > MAX_PATH_LENGTH:
        path = path[:MAX_PATH_LENGTH]

    # Weight = estimated views for this sampled hit (1 sample at rate N => N views)
    try:
        weight = max(1, int(data.get("sampling_rate", 1)))
    except (TypeError, ValueError):
        weight = 1

    return (path, stat_date), weight


def aggregate_items(
    items: list[ClaimedItem],
) -> tuple[dict[AggregateKey, int], dict[AggregateKey, list[ClaimedItem]], list[ClaimedItem]]:
    """
    Sum weights per ``(path, date)``.

    Returns:
        (totals per key, contributing items per key, malformed items)
    """
    totals: dict[AggregateKey, int] = defaultdict(int)
    contributors: dict[AggregateKey, list[ClaimedItem]] = defaultdict(list)
    malformed: list[ClaimedItem] = []

    for item in items:
        parsed = parse_item(item.data)
        if parsed is None:
            malformed.append(item)
            continue
        key, weight = parsed
        totals[key] += weight
        contributors[key].append(item)

    return dict(totals), dict(contributors), malformed


class AggregationWorker:
    """
    Merges queued view events into daily counters.

    Each invocation claims at most ``batch_size`` items (seed included) with
    a ``lease_seconds`` lease, then issues one upsert per unique key.
    """

    def __init__(
        self,
        queue: ViewEventQueue,
        store: DailyCounterStore,
        batch_size: int = BATCH_SIZE,
        lease_seconds: int = LEASE_SECONDS,
    ):
        self.queue = queue
        self.store = store
        self.batch_size = max(1, batch_size)
        self.lease_seconds = lease_seconds

    def process(self, seed: ClaimedItem | None = None) -> BatchResult:
        """
        Process one batch.

        Args:
            seed: An item the caller already claimed (counts toward the batch)

        Returns:
            BatchResult summary
        """
        result = BatchResult()
        items: list[ClaimedItem] = [seed] if seed is not None else []

        try:
            items.extend(self.queue.claim_batch(self.batch_size - len(items), self.lease_seconds))
        except SQLAlchemyError as e:
            # Whatever was claimed stays leased and is redelivered later
            logger.error(f"Failed to claim page analytics queue items: {e}")
            result.claimed = len(items)
            result.aborted = True
            return result

        result.claimed = len(items)
        if not items:
            return result

        totals, contributors, malformed = aggregate_items(items)
        result.malformed = len(malformed)
        if malformed:
            logger.info(f"Dropping {len(malformed)} malformed page analytics queue item(s)")

        done: list[ClaimedItem] = list(malformed)
        for key, count in totals.items():
            path, stat_date = key
            try:
                self.store.upsert_add(path, stat_date, count)
                self.store.db.commit()
            except OperationalError as e:
                self.store.db.rollback()
                logger.error(
                    f"Page analytics store unavailable, aborting batch "
                    f"({len(totals) - result.merged_keys - result.failed_keys} key(s) left): {e}"
                )
                result.aborted = True
                break
            except SQLAlchemyError as e:
                self.store.db.rollback()
                # Leave contributing items leased so they are redelivered
                logger.warning(f"Failed to merge page analytics for {path} on {stat_date}: {e}")
                result.failed_keys += 1
                continue
            result.merged_keys += 1
            done.extend(contributors[key])

        if done:
            try:
                result.deleted = self.queue.delete(done)
            except SQLAlchemyError as e:
                # Merged items will be redelivered and counted again; log loudly
                logger.error(f"Failed to delete {len(done)} processed page analytics item(s): {e}")
                result.aborted = True

        logger.debug(
            f"Page analytics batch: claimed={result.claimed} merged={result.merged_keys} "
            f"malformed={result.malformed} failed={result.failed_keys}"
        )
        return result

    def drain(self, time_limit: float = 15.0, clock: Callable[[], float] = time.monotonic) -> DrainResult:
        """
        Process batches until the queue is empty, a batch makes no progress,
        or ``time_limit`` seconds have passed.
        """
        summary = DrainResult()
        deadline = clock() + time_limit
        while clock() < deadline:
            batch = self.process()
            if batch.claimed == 0:
                break
            summary.add(batch)
            if batch.aborted or batch.deleted == 0:
                break
        if summary.claimed:
            logger.info(
                f"Page analytics queue drained: {summary.claimed} item(s) in "
                f"{summary.batches} batch(es), {summary.merged_keys} counter merge(s)"
            )
        return summary
