"""
Durable at-least-once queue of raw page-view events.

Items live in the ``page_analytics_queue`` table. Consumers claim items
with a lease; a claimed item that is not deleted before its lease runs out
becomes claimable again, so every item is delivered at least once.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from .models import QueueItem

logger = logging.getLogger(__name__)

QUEUE_NAME = "page_analytics"


@dataclass(frozen=True)
class ClaimedItem:
    """A queue item held under lease by the current consumer."""
    item_id: int
    data: Any
    expire: int


class ViewEventQueue:
    """SQL-backed lease queue for page-view events."""

    def __init__(self, db: Session, now: Callable[[], float] = time.time):
        self.db = db
        self._now = now

    def enqueue(self, data: dict[str, Any]) -> int:
        """
        Append an item. One INSERT, committed immediately.

        Raises:
            sqlalchemy.exc.SQLAlchemyError: if the store is unavailable
        """
        item = QueueItem(data=data, created=int(self._now()), expire=0)
        self.db.add(item)
        try:
            # Read the id before commit expires the instance
            self.db.flush()
            item_id = item.item_id
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return item_id

    def claim_batch(self, max_items: int, lease_seconds: int = 60) -> list[ClaimedItem]:
        """
        Claim up to ``max_items`` items that are unclaimed or whose lease expired.

        Each claim is a conditional update on the expire value we observed,
        so two consumers can never both win the same item within one lease.
        """
        if max_items <= 0:
            return []

        now = int(self._now())
        candidates = self.db.execute(
            select(QueueItem.item_id, QueueItem.data, QueueItem.expire)
            .where(or_(QueueItem.expire == 0, QueueItem.expire < now))
            .order_by(QueueItem.created, QueueItem.item_id)
            .limit(max_items)
            .with_for_update(skip_locked=True)
        ).all()

        claimed: list[ClaimedItem] = []
        new_expire = now + lease_seconds
        try:
            for item_id, data, observed_expire in candidates:
                result = self.db.execute(
                    update(QueueItem)
                    .where(QueueItem.item_id == item_id, QueueItem.expire == observed_expire)
                    .values(expire=new_expire)
                )
                if result.rowcount == 1:
                    claimed.append(ClaimedItem(item_id=item_id, data=data, expire=new_expire))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if len(claimed) < len(candidates):
            logger.debug(f"Lost {len(candidates) - len(claimed)} queue claims to other consumers")
        return claimed

    def claim_item(self, lease_seconds: int = 60) -> ClaimedItem | None:
        items = self.claim_batch(1, lease_seconds)
        return items[0] if items else None

    def delete(self, items: Iterable[ClaimedItem]) -> int:
        """Permanently remove claimed items. Returns the number of rows deleted."""
        ids = [item.item_id for item in items]
        if not ids:
            return 0
        try:
            result = self.db.execute(delete(QueueItem).where(QueueItem.item_id.in_(ids)))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return result.rowcount

    def release(self, item: ClaimedItem) -> bool:
        """Give up a lease early so the item can be claimed again right away."""
        result = self.db.execute(
            update(QueueItem)
            .where(QueueItem.item_id == item.item_id, QueueItem.expire == item.expire)
            .values(expire=0)
        )
        self.db.commit()
        return result.rowcount == 1

    def number_of_items(self) -> int:
        """Number of queued items, claimed or not."""
        return self.db.execute(select(func.count()).select_from(QueueItem)).scalar_one()
