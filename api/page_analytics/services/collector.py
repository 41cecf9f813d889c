"""
Page-view collection on the request path.

The decision (classify + sample) is made while the response is composed;
the resulting event waits in a per-request ``TrackingContext`` and is
written to the queue after the response has been sent.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError

from ..queue import ViewEventQueue
from ..settings import AnalyticsSettings
from ..utils.path_classifier import PathClassifier, UserContext
from ..utils.sampling import decide

logger = logging.getLogger(__name__)


class CollectionError(RuntimeError):
    """A view event could not be written to the queue."""


@dataclass(frozen=True)
class ViewEvent:
    """One recorded sample: ``weight`` real views of ``path`` on ``date``."""
    path: str
    date: date
    weight: int

    def to_queue_item(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "date": self.date.isoformat(),
            "sampling_rate": self.weight,
        }


@dataclass
class TrackingContext:
    """Request-scoped buffer for the pending view event. One per request."""
    pending: list[ViewEvent] = field(default_factory=list)

    def add(self, event: ViewEvent) -> None:
        self.pending.append(event)

    def drain(self) -> list[ViewEvent]:
        events, self.pending = self.pending, []
        return events


class PageViewCollector:
    """Classifies, samples and enqueues page views."""

    def __init__(
        self,
        settings: AnalyticsSettings,
        classifier: PathClassifier | None = None,
        rng: random.Random | None = None,
        today: Callable[[], date] | None = None,
    ):
        self.settings = settings
        self.classifier = classifier or PathClassifier(settings)
        self.rng = rng
        self._today = today or self._local_today

    def _local_today(self) -> date:
        return datetime.now(ZoneInfo(self.settings.timezone)).date()

    def decide(self, raw_path: str | None, user: UserContext | None = None) -> ViewEvent | None:
        """
        Run the exclusion rules and the sampling decision.

        Only call this for successful (HTTP 200) responses.

        Returns:
            The ViewEvent to record, or None when the view is not recorded
        """
        path = self.classifier.classify(raw_path, user)
        if path is None:
            return None

        decision = decide(self.settings.effective_sampling_rate, self.rng)
        if not decision.accepted:
            return None

        return ViewEvent(path=path, date=self._today(), weight=decision.weight)

    def record(self, queue: ViewEventQueue, event: ViewEvent) -> int:
        """
        Write an event to the queue.

        Raises:
            CollectionError: if the queue store is unavailable
        """
        try:
            return queue.enqueue(event.to_queue_item())
        except SQLAlchemyError as e:
            raise CollectionError(f"Failed to enqueue page view for {event.path}: {e}") from e

    def flush(self, queue: ViewEventQueue, context: TrackingContext) -> int:
        """Write every pending event of a request. Returns the number written."""
        written = 0
        for event in context.drain():
            self.record(queue, event)
            written += 1
        return written
