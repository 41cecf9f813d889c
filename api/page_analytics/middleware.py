"""Page view tracking middleware for the API."""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Request, Response
from sqlalchemy.orm import Session
from starlette.background import BackgroundTask, BackgroundTasks
from starlette.middleware.base import BaseHTTPMiddleware

from .auth import user_context_from_request
from .queue import ViewEventQueue
from .services.collector import CollectionError, PageViewCollector, TrackingContext
from .utils.path_classifier import UserContext

logger = logging.getLogger(__name__)

# Paths that are never page views
# These are either internal endpoints, docs, or the analytics surface itself
EXCLUDED_PATHS = {
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}

# Path prefixes that are never page views
EXCLUDED_PATH_PREFIXES = (
    "/analytics/",
    "/track/",
    "/static/",
)

TRACKED_METHODS = {"GET"}


def get_tracking_context(request: Request) -> TrackingContext | None:
    """The current request's tracking buffer, if the middleware is installed."""
    return getattr(request.state, "page_analytics", None)


class PageViewTrackingMiddleware(BaseHTTPMiddleware):
    """
    Record page views with the write deferred until after the response.

    The record/skip decision is made once the response status is known and
    the resulting event is kept in a ``TrackingContext`` bound to this
    request only. The queue write runs as a background task of the same
    response, so it never adds latency to what the user sees and a failure
    there never fails the request.
    """

    def __init__(
        self,
        app,
        collector: PageViewCollector | None = None,
        session_factory: Callable[[], Session] | None = None,
        user_resolver: Callable[[Request], UserContext] | None = None,
    ):
        super().__init__(app)
        self._collector = collector
        self._session_factory = session_factory
        self.user_resolver = user_resolver or user_context_from_request

    @property
    def collector(self) -> PageViewCollector:
        if self._collector is None:
            from .deps import get_settings

            self._collector = PageViewCollector(get_settings())
        return self._collector

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            from .db import SessionLocal

            self._session_factory = SessionLocal
        return self._session_factory

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        context = TrackingContext()
        request.state.page_analytics = context

        response = await call_next(request)

        if self._should_track(request, response):
            try:
                event = self.collector.decide(request.url.path, self.user_resolver(request))
                if event is not None:
                    context.add(event)
            except Exception as e:
                # Tracking must never fail the request
                logger.warning(f"Failed to evaluate page view for {request.url.path}: {e}", exc_info=True)

        if context.pending:
            self._attach_flush(response, context)

        return response

    def _should_track(self, request: Request, response: Response) -> bool:
        """Only successful page loads are candidates."""
        if request.method not in TRACKED_METHODS:
            return False

        if response.status_code != 200:
            return False

        path = request.url.path
        if path in EXCLUDED_PATHS:
            return False

        if path.startswith(EXCLUDED_PATH_PREFIXES):
            return False

        return True

    def _attach_flush(self, response: Response, context: TrackingContext) -> None:
        flush = BackgroundTask(self._flush, context)
        existing = getattr(response, "background", None)
        if existing is None:
            response.background = flush
            return

        tasks = BackgroundTasks()
        tasks.add_task(existing)
        tasks.add_task(flush)
        response.background = tasks

    def _flush(self, context: TrackingContext) -> None:
        """Write the request's pending events. Runs after the response is sent."""
        db = self.session_factory()
        try:
            written = self.collector.flush(ViewEventQueue(db), context)
            logger.debug(f"Queued {written} page view(s)")
        except CollectionError as e:
            logger.error(f"Page analytics collection failure: {e}")
        finally:
            db.close()
