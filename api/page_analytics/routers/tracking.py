"""Client-side page view tracking endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from .. import schemas
from ..auth import user_context_from_request
from ..db import SessionLocal
from ..deps import get_collector
from ..middleware import get_tracking_context
from ..queue import ViewEventQueue
from ..services.collector import CollectionError, PageViewCollector, TrackingContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/track", tags=["Tracking"])


def flush_tracking_context(collector: PageViewCollector, context: TrackingContext) -> None:
    """Write pending events after the response has been sent."""
    db = SessionLocal()
    try:
        collector.flush(ViewEventQueue(db), context)
    except CollectionError as e:
        logger.error(f"Page analytics collection failure: {e}")
    finally:
        db.close()


@router.post("/page-view", status_code=status.HTTP_204_NO_CONTENT)
async def track_page_view(
    payload: schemas.PageViewRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    collector: PageViewCollector = Depends(get_collector),
) -> None:
    """
    Track a page view from the frontend.

    Called by the frontend on page load for client-routed pages. The same
    exclusion rules and sampling apply as for server-rendered pages; the
    queue write happens after the response.

    **Public endpoint** - No authentication required.

    Returns:
        204 No Content (always succeeds, errors are logged but don't fail)
    """
    try:
        event = collector.decide(payload.path, user_context_from_request(request))
        if event is None:
            return

        context = get_tracking_context(request)
        if context is not None:
            # Middleware flushes this request's buffer once the response is sent
            context.add(event)
        else:
            context = TrackingContext()
            context.add(event)
            background_tasks.add_task(flush_tracking_context, collector, context)

        logger.debug(f"Tracked client page view: {event.path}")
    except Exception as e:
        # Log error but don't fail the request (tracking should be non-blocking)
        logger.warning(f"Failed to track client page view: {e}", exc_info=True)
