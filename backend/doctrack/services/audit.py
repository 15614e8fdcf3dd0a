"""
Audit logger.

Every write happens in its own database session and is wrapped so that a
failure is logged and swallowed; callers normally schedule these functions
as FastAPI background tasks after the response is sent.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..core.clock import utcnow
from ..database import SessionLocal
from ..models import AuditLog

logger = logging.getLogger(__name__)

EVENT_ACCESS_ATTEMPT = "access_attempt"
EVENT_SUSPICIOUS_ACTIVITY = "suspicious_activity"
EVENT_SHARE_LINK_CREATED = "share_link_created"
EVENT_UPLOAD = "upload"


def log_event(
    event: str,
    *,
    document_id: Optional[int] = None,
    share_token: Optional[str] = None,
    user_id: Optional[int] = None,
    ip_hash: Optional[str] = None,
    user_agent: Optional[str] = None,
    email: Optional[str] = None,
    success: Optional[bool] = None,
    details: Optional[dict] = None,
    now: Optional[datetime] = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> bool:
    """
    Write one audit row.

    Returns:
        True if the row was stored, False if the write failed
    """
    db = session_factory()
    try:
        db.add(AuditLog(
            event=event,
            document_id=document_id,
            share_token=share_token,
            user_id=user_id,
            ip_hash=ip_hash,
            user_agent=(user_agent or "")[:512] or None,
            email=email,
            success=success,
            details=details or {},
            created_at=now or utcnow(),
        ))
        db.commit()
        return True
    except Exception as e:
        db.rollback()
        logger.error("Failed to write audit event %s: %s", event, e)
        return False
    finally:
        db.close()


def count_recent_failures(
    db: Session,
    share_token: str,
    ip_hash: str,
    reason: str,
    now: Optional[datetime] = None,
    window_minutes: Optional[int] = None,
) -> int:
    """Failed access attempts for one link and visitor inside the detection window"""
    now = now or utcnow()
    window_minutes = settings.SUSPICIOUS_WINDOW_MINUTES if window_minutes is None else window_minutes

    rows = db.query(AuditLog.details).filter(
        AuditLog.event == EVENT_ACCESS_ATTEMPT,
        AuditLog.share_token == share_token,
        AuditLog.ip_hash == ip_hash,
        AuditLog.success == False,  # noqa: E712
        AuditLog.created_at >= now - timedelta(minutes=window_minutes),
    ).all()

    return sum(1 for (details,) in rows if (details or {}).get("reason") == reason)


def log_access_attempt(
    share_token: str,
    success: bool,
    *,
    document_id: Optional[int] = None,
    ip_hash: Optional[str] = None,
    user_agent: Optional[str] = None,
    email: Optional[str] = None,
    reason: Optional[str] = None,
    session_id: Optional[str] = None,
    now: Optional[datetime] = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> None:
    """
    Record an access attempt and flag password-guessing bursts.

    A `suspicious_activity` event is written when the failure that was just
    recorded brings the count for this link and IP hash to the threshold.
    """
    now = now or utcnow()
    details = {}
    if reason:
        details["reason"] = reason
    if session_id:
        details["session_id"] = session_id

    stored = log_event(
        EVENT_ACCESS_ATTEMPT,
        document_id=document_id,
        share_token=share_token,
        ip_hash=ip_hash,
        user_agent=user_agent,
        email=email,
        success=success,
        details=details,
        now=now,
        session_factory=session_factory,
    )

    if success or not stored or reason != "invalid_password" or not ip_hash:
        return

    db = session_factory()
    try:
        failures = count_recent_failures(db, share_token, ip_hash, reason, now=now)
    except Exception as e:
        logger.error("Failed to count recent access failures for %s: %s", share_token, e)
        return
    finally:
        db.close()

    if failures == settings.SUSPICIOUS_FAILURE_THRESHOLD:
        logger.warning("Suspicious access pattern on share link %s: %d failed passwords", share_token, failures)
        log_suspicious_activity(
            share_token,
            "repeated_invalid_password",
            document_id=document_id,
            ip_hash=ip_hash,
            user_agent=user_agent,
            details={"failures": failures, "window_minutes": settings.SUSPICIOUS_WINDOW_MINUTES},
            now=now,
            session_factory=session_factory,
        )


def log_suspicious_activity(
    share_token: Optional[str],
    activity: str,
    *,
    document_id: Optional[int] = None,
    ip_hash: Optional[str] = None,
    user_agent: Optional[str] = None,
    details: Optional[dict] = None,
    now: Optional[datetime] = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> bool:
    return log_event(
        EVENT_SUSPICIOUS_ACTIVITY,
        document_id=document_id,
        share_token=share_token,
        ip_hash=ip_hash,
        user_agent=user_agent,
        success=False,
        details={"activity": activity, **(details or {})},
        now=now,
        session_factory=session_factory,
    )


def log_share_link_created(
    share_token: str,
    document_id: int,
    user_id: int,
    *,
    details: Optional[dict] = None,
    now: Optional[datetime] = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> bool:
    return log_event(
        EVENT_SHARE_LINK_CREATED,
        document_id=document_id,
        share_token=share_token,
        user_id=user_id,
        success=True,
        details=details,
        now=now,
        session_factory=session_factory,
    )


def log_upload(
    document_id: int,
    user_id: Optional[int],
    *,
    ip_hash: Optional[str] = None,
    details: Optional[dict] = None,
    now: Optional[datetime] = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> bool:
    """
    Record a document upload.

    Called by the upload service that stores blobs and creates Document
    rows; that service runs outside this package.
    """
    return log_event(
        EVENT_UPLOAD,
        document_id=document_id,
        user_id=user_id,
        ip_hash=ip_hash,
        success=True,
        details=details,
        now=now,
        session_factory=session_factory,
    )


def get_unique_ip_count(db: Session, document_id: int) -> int:
    """Distinct visitor IP hashes with a successful access to the document"""
    return db.query(func.count(func.distinct(AuditLog.ip_hash))).filter(
        AuditLog.event == EVENT_ACCESS_ATTEMPT,
        AuditLog.document_id == document_id,
        AuditLog.success == True,  # noqa: E712
        AuditLog.ip_hash.isnot(None),
    ).scalar() or 0


def get_recent_suspicious_activity(
    db: Session,
    document_id: int,
    hours: int = 24,
    limit: int = 50,
    now: Optional[datetime] = None,
) -> List[dict]:
    now = now or utcnow()
    rows = db.query(AuditLog).filter(
        AuditLog.event == EVENT_SUSPICIOUS_ACTIVITY,
        AuditLog.document_id == document_id,
        AuditLog.created_at >= now - timedelta(hours=hours),
    ).order_by(AuditLog.created_at.desc()).limit(limit).all()

    return [
        {
            "share_token": row.share_token,
            "ip_hash": row.ip_hash,
            "activity": (row.details or {}).get("activity"),
            "details": row.details or {},
            "created_at": row.created_at.isoformat(),
        }
        for row in rows
    ]
