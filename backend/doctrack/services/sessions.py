"""
Session store mutations driven by viewer telemetry, plus the owner-facing
session listing and the idle-session sweep.
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session, selectinload

from ..config import settings
from ..core.clock import day_bounds, utcnow
from ..core.exceptions import SessionNotFound
from ..database import SessionLocal
from ..models import Document, PageView, ShareLink, ViewSession
from ..schemas.tracking import PageViewEvent, SessionActivityEvent, SessionEndEvent
from . import aggregator

logger = logging.getLogger(__name__)


def get_session(db: Session, session_id: str, share_token: Optional[str] = None) -> ViewSession:
    """
    Look up a session by its public id.

    Raises:
        SessionNotFound: unknown id, or the session belongs to another share link
    """
    session = db.query(ViewSession).filter(ViewSession.session_id == session_id).first()
    if session is None:
        raise SessionNotFound(session_id)
    if share_token is not None and session.share_link.share_token != share_token:
        raise SessionNotFound(session_id)
    return session


def record_page_view(db: Session, event: PageViewEvent, now: Optional[datetime] = None) -> PageView:
    """
    Append a page-view row.

    The event's duration is the dwell time on `previous_page`; the entry page
    of a session carries 0. A page view also counts as viewer activity.
    """
    now = now or utcnow()
    session = get_session(db, event.session_id, event.share_id)

    page_view = PageView(
        session_id=session.id,
        page_number=event.page,
        previous_page=event.previous_page,
        duration_ms=event.duration,
        scroll_depth=event.scroll_depth,
        viewed_at=now,
    )
    db.add(page_view)
    db.execute(
        update(ViewSession)
        .where(ViewSession.id == session.id)
        .values(last_active_at=now, is_active=True)
    )
    db.commit()
    db.refresh(page_view)
    return page_view


def touch_session(db: Session, event: SessionActivityEvent, now: Optional[datetime] = None) -> ViewSession:
    """
    Heartbeat: mark the session active and extend last_active_at.

    Uses the server clock; the client's lastActiveAt is informational only.
    Duration is never derived here.
    """
    now = now or utcnow()
    session = get_session(db, event.session_id)

    db.execute(
        update(ViewSession)
        .where(ViewSession.id == session.id)
        .values(last_active_at=now, is_active=True)
    )
    db.commit()
    db.refresh(session)
    return session


def close_session(db: Session, event: SessionEndEvent, now: Optional[datetime] = None) -> ViewSession:
    """
    Close a session with the client's authoritative duration.

    Repeated session-end events overwrite the duration (last write wins).
    The global aggregate is updated afterwards; its failure does not undo
    the close.
    """
    now = now or utcnow()
    session = get_session(db, event.session_id, event.share_id)

    db.execute(
        update(ViewSession)
        .where(ViewSession.id == session.id)
        .values(is_active=False, total_duration_ms=event.duration_ms)
    )
    db.commit()
    db.refresh(session)

    aggregator.record_session_duration(db, event.duration_ms, now=now)
    return session


def update_page_count(document_id: int, total_pages: int, session_factory=SessionLocal) -> None:
    """
    Remember the highest page count reported by viewers for a document.

    Runs as a background task after the page-view response; failures are
    logged only.
    """
    db = session_factory()
    try:
        db.execute(
            update(Document)
            .where(Document.id == document_id)
            .where((Document.page_count.is_(None)) | (Document.page_count < total_pages))
            .values(page_count=total_pages)
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error("Failed to update page count for document %s: %s", document_id, e)
    finally:
        db.close()


def close_idle_sessions(
    db: Session,
    now: Optional[datetime] = None,
    idle_minutes: Optional[int] = None,
) -> int:
    """
    Mark sessions inactive once they have been idle past the threshold.

    total_duration_ms is left as is. Never raises; returns the number of
    sessions closed (0 on failure).
    """
    now = now or utcnow()
    idle_minutes = settings.IDLE_SESSION_TIMEOUT_MINUTES if idle_minutes is None else idle_minutes
    cutoff = now - timedelta(minutes=idle_minutes)

    try:
        result = db.execute(
            update(ViewSession)
            .where(ViewSession.is_active == True)  # noqa: E712
            .where(ViewSession.last_active_at < cutoff)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error("Failed to close idle sessions: %s", e)
        return 0

    closed = result.rowcount or 0
    if closed:
        logger.info("Auto-closed %d inactive sessions", closed)
    else:
        logger.debug("No idle sessions to close")
    return closed


def list_sessions(
    db: Session,
    document_id: int,
    email: Optional[str] = None,
    device: Optional[str] = None,
    country: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = 1,
    per_page: int = 20,
) -> Tuple[List[ViewSession], int]:
    """
    Sessions of one document, newest first, with page views loaded.

    Returns:
        (sessions on the requested page, total matching sessions)
    """
    query = db.query(ViewSession).join(ShareLink).filter(ShareLink.document_id == document_id)

    if email:
        query = query.filter(ViewSession.viewer_email.ilike(f"%{email}%"))
    if device:
        query = query.filter(ViewSession.device == device)
    if country:
        query = query.filter(ViewSession.country == country.upper())
    if start_date:
        query = query.filter(ViewSession.started_at >= day_bounds(start_date)[0])
    if end_date:
        query = query.filter(ViewSession.started_at < day_bounds(end_date)[1])

    total = query.count()
    sessions = query.options(
        selectinload(ViewSession.page_views),
        selectinload(ViewSession.share_link),
    ).order_by(ViewSession.started_at.desc()).offset((page - 1) * per_page).limit(per_page).all()

    return sessions, total


def serialize_session(session: ViewSession) -> dict:
    return {
        "session_id": session.session_id,
        "share_token": session.share_link.share_token,
        "viewer_email": session.viewer_email,
        "viewer_name": session.viewer_name,
        "country": session.country,
        "device": session.device,
        "browser": session.browser,
        "os": session.os,
        "referer": session.referer,
        "started_at": session.started_at,
        "last_active_at": session.last_active_at,
        "total_duration_ms": session.total_duration_ms,
        "is_unique": session.is_unique,
        "is_active": session.is_active,
        "page_views": [
            {
                "page_number": pv.page_number,
                "previous_page": pv.previous_page,
                "duration_ms": pv.duration_ms,
                "scroll_depth": pv.scroll_depth,
                "viewed_at": pv.viewed_at,
            }
            for pv in session.page_views
        ],
    }
