"""
Retention sweeper.

Each category is deleted in its own transaction; a failure is rolled back,
recorded in the report and the remaining categories still run. Windows:

* sessions: past data_retention_date, or started before the fallback window
* analytics summaries: older than SUMMARY_RETENTION_MONTHS
* email captures: older than EMAIL_CAPTURE_RETENTION_MONTHS
* orphaned documents (no valid owner): older than ORPHAN_DOCUMENT_RETENTION_DAYS,
  blob deleted from object storage first (best-effort)
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from ..config import settings
from ..core.clock import months_ago, utcnow
from ..models import AnalyticsSummary, Document, EmailCapture, PageView, ShareLink, User, ViewSession
from . import storage

logger = logging.getLogger(__name__)

CATEGORIES = ("sessions", "summaries", "email_captures", "orphan_documents")


def expired_session_filter(now: datetime):
    fallback_cutoff = now - timedelta(days=settings.SESSION_FALLBACK_RETENTION_DAYS)
    return or_(
        ViewSession.data_retention_date < now,
        ViewSession.started_at < fallback_cutoff,
    )


def delete_expired_sessions(db: Session, now: datetime) -> Dict[str, int]:
    expired_ids = select(ViewSession.id).where(expired_session_filter(now))

    page_views = db.execute(
        delete(PageView)
        .where(PageView.session_id.in_(expired_ids))
        .execution_options(synchronize_session=False)
    ).rowcount or 0
    sessions = db.execute(
        delete(ViewSession)
        .where(expired_session_filter(now))
        .execution_options(synchronize_session=False)
    ).rowcount or 0

    return {"sessions": sessions, "page_views": page_views}


def delete_old_summaries(db: Session, now: datetime) -> Dict[str, int]:
    cutoff = months_ago(now, settings.SUMMARY_RETENTION_MONTHS).date()
    deleted = db.execute(
        delete(AnalyticsSummary)
        .where(AnalyticsSummary.date < cutoff)
        .execution_options(synchronize_session=False)
    ).rowcount or 0
    return {"summaries": deleted}


def delete_old_email_captures(db: Session, now: datetime) -> Dict[str, int]:
    cutoff = months_ago(now, settings.EMAIL_CAPTURE_RETENTION_MONTHS)
    deleted = db.execute(
        delete(EmailCapture)
        .where(EmailCapture.captured_at < cutoff)
        .execution_options(synchronize_session=False)
    ).rowcount or 0
    return {"email_captures": deleted}


def find_orphan_documents(db: Session, now: datetime) -> List[Document]:
    """Documents past the orphan window whose owner is unset or no longer exists"""
    cutoff = now - timedelta(days=settings.ORPHAN_DOCUMENT_RETENTION_DAYS)
    return db.query(Document).outerjoin(User, Document.owner_id == User.id).filter(
        Document.created_at < cutoff,
        User.id.is_(None),
    ).all()


def delete_document_rows(db: Session, document_id: int) -> None:
    """Delete a document and everything hanging off it, children first"""
    link_ids = select(ShareLink.id).where(ShareLink.document_id == document_id)
    session_ids = select(ViewSession.id).where(ViewSession.share_link_id.in_(link_ids))

    for stmt in (
        delete(PageView).where(PageView.session_id.in_(session_ids)),
        delete(ViewSession).where(ViewSession.share_link_id.in_(link_ids)),
        delete(EmailCapture).where(EmailCapture.share_link_id.in_(link_ids)),
        delete(ShareLink).where(ShareLink.document_id == document_id),
        delete(AnalyticsSummary).where(AnalyticsSummary.document_id == document_id),
        delete(Document).where(Document.id == document_id),
    ):
        db.execute(stmt.execution_options(synchronize_session=False))


def delete_orphan_documents(
    db: Session,
    now: datetime,
    delete_blob: Callable[[str], bool] = storage.delete_object,
) -> Dict[str, int]:
    orphans = [(doc.id, doc.storage_key) for doc in find_orphan_documents(db, now)]
    storage_failures = 0

    for document_id, storage_key in orphans:
        if not delete_blob(storage_key):
            storage_failures += 1
            logger.warning("Blob %s for orphaned document %s was not deleted", storage_key, document_id)
        delete_document_rows(db, document_id)

    return {"orphan_documents": len(orphans), "storage_failures": storage_failures}


def run_retention_sweep(
    db: Session,
    now: Optional[datetime] = None,
    delete_blob: Optional[Callable[[str], bool]] = None,
) -> dict:
    """
    Sweep every category and return a per-category report.

    Never raises; errors are collected under "errors".
    """
    now = now or utcnow()
    delete_blob = delete_blob or storage.delete_object

    report = {
        "sessions": 0,
        "page_views": 0,
        "summaries": 0,
        "email_captures": 0,
        "orphan_documents": 0,
        "storage_failures": 0,
        "errors": [],
    }

    sweeps = {
        "sessions": lambda: delete_expired_sessions(db, now),
        "summaries": lambda: delete_old_summaries(db, now),
        "email_captures": lambda: delete_old_email_captures(db, now),
        "orphan_documents": lambda: delete_orphan_documents(db, now, delete_blob),
    }

    for category in CATEGORIES:
        try:
            counts = sweeps[category]()
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error("Retention sweep failed for %s: %s", category, e)
            report["errors"].append({"category": category, "error": str(e)})
            continue
        report.update(counts)

    deleted = sum(report[key] for key in ("sessions", "summaries", "email_captures", "orphan_documents"))
    if deleted or report["errors"]:
        logger.info(
            "Retention sweep: %d sessions, %d page views, %d summaries, %d email captures, "
            "%d orphaned documents removed, %d errors",
            report["sessions"], report["page_views"], report["summaries"],
            report["email_captures"], report["orphan_documents"], len(report["errors"]),
        )
    else:
        logger.debug("Retention sweep found nothing to delete")

    return report
