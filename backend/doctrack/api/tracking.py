"""
Viewer telemetry ingestion.

Bodies are parsed by hand so that unload beacons (text/plain or
octet-stream carrying JSON) are handled exactly like application/json.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session
import logging

from ..config import settings
from ..core.rate_limit import limiter
from ..database import get_db
from ..models import ShareLink
from ..schemas.tracking import PageViewEvent, SessionActivityEvent, SessionEndEvent
from ..services import sessions
from ..services.analytics import get_share_stats
from ..utils.request import parse_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["tracking"])


@router.post("/page-view")
@limiter.limit(settings.TRACKING_RATE_LIMIT)
async def track_page_view(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    event = await parse_event(request, PageViewEvent)
    page_view = sessions.record_page_view(db, event)

    document_id = page_view.session.share_link.document_id
    background_tasks.add_task(sessions.update_page_count, document_id, event.total_pages)

    logger.debug("Page view tracked: %s page %d/%d", event.share_id, event.page, event.total_pages)
    return {"success": True, "message": "Page view tracked"}


@router.post("/session-end")
@limiter.limit(settings.TRACKING_RATE_LIMIT)
async def track_session_end(
    request: Request,
    db: Session = Depends(get_db)
):
    event = await parse_event(request, SessionEndEvent)
    sessions.close_session(db, event)

    logger.debug(
        "Session end tracked: %s - %ds, %d/%d pages",
        event.share_id, event.duration_seconds, event.max_page_reached, event.total_pages
    )
    return {"success": True, "message": "Session end tracked"}


@router.post("/session-activity")
@limiter.limit(settings.TRACKING_RATE_LIMIT)
async def track_session_activity(
    request: Request,
    db: Session = Depends(get_db)
):
    event = await parse_event(request, SessionActivityEvent)
    session = sessions.touch_session(db, event)

    return {"success": True, "lastActiveAt": session.last_active_at.isoformat()}


@router.get("/document/{share_id}/stats")
@limiter.limit(settings.STATS_RATE_LIMIT)
async def get_document_stats(
    share_id: str,
    request: Request,
    db: Session = Depends(get_db)
):
    link = db.query(ShareLink).filter(ShareLink.share_token == share_id).first()
    if not link:
        raise HTTPException(status_code=404, detail="Document stats not found")

    return get_share_stats(db, link)
