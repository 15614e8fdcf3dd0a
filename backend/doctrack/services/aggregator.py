"""
Aggregator.

Two paths keep the counters readable without scanning history:

* the incremental path bumps the GlobalAggregate singleton with single
  UPDATE statements whose right-hand sides reference the current column
  values, so concurrent writers never lose an increment;
* the recomputation path rebuilds AnalyticsSummary rows for a
  (document, day) from raw session rows and upserts them, and can
  re-baseline the global row from the summary table.

Incremental updates are best-effort: failures are logged and reported as
False, never raised into the ingestion request.
"""

import logging
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional
from urllib.parse import urlparse

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..core.clock import day_bounds, utcnow
from ..models import (
    AnalyticsSummary, EmailCapture, GlobalAggregate, GLOBAL_AGGREGATE_ID, ShareLink, ViewSession,
)

logger = logging.getLogger(__name__)

DIRECT_REFERER = "direct"
UNKNOWN = "unknown"


def ensure_global_row(db: Session) -> GlobalAggregate:
    """Return the GlobalAggregate singleton, creating it on first use"""
    row = db.get(GlobalAggregate, GLOBAL_AGGREGATE_ID)
    if row is not None:
        return row

    db.add(GlobalAggregate(id=GLOBAL_AGGREGATE_ID, last_updated=utcnow()))
    try:
        db.commit()
    except IntegrityError:
        # Created concurrently by another writer
        db.rollback()
    return db.get(GlobalAggregate, GLOBAL_AGGREGATE_ID)


def _apply_global_update(db: Session, values: dict, now: Optional[datetime] = None) -> bool:
    try:
        ensure_global_row(db)
        result = db.execute(
            update(GlobalAggregate)
            .where(GlobalAggregate.id == GLOBAL_AGGREGATE_ID)
            .values(last_updated=now or utcnow(), **values)
        )
        db.commit()
        return result.rowcount == 1
    except Exception as e:
        db.rollback()
        logger.error("Failed to update global aggregate (%s): %s", ", ".join(values), e)
        return False


def record_view(db: Session, is_unique: bool, now: Optional[datetime] = None) -> bool:
    """Count a newly opened session"""
    return _apply_global_update(db, {
        "total_views": GlobalAggregate.total_views + 1,
        "total_unique_views": GlobalAggregate.total_unique_views + (1 if is_unique else 0),
    }, now)


def record_session_duration(db: Session, duration_ms: int, now: Optional[datetime] = None) -> bool:
    """
    Accumulate a final session duration and refresh the running average.

    A duplicate session-end is counted again; the drift is corrected by
    rebaseline_global. Zero durations are not counted, matching the
    summaries' completed_sessions.
    """
    duration_ms = max(int(duration_ms), 0)
    if duration_ms == 0:
        return True
    return _apply_global_update(db, {
        "total_duration_ms": GlobalAggregate.total_duration_ms + duration_ms,
        "completed_sessions": GlobalAggregate.completed_sessions + 1,
        "avg_session_duration_ms": (GlobalAggregate.total_duration_ms + duration_ms)
        // (GlobalAggregate.completed_sessions + 1),
    }, now)


def record_email_capture(db: Session, now: Optional[datetime] = None) -> bool:
    return _apply_global_update(db, {
        "total_email_captures": GlobalAggregate.total_email_captures + 1,
    }, now)


def record_share(db: Session, now: Optional[datetime] = None) -> bool:
    return _apply_global_update(db, {
        "total_shares": GlobalAggregate.total_shares + 1,
    }, now)


def get_global(db: Session) -> GlobalAggregate:
    return ensure_global_row(db)


def referer_key(referer: Optional[str]) -> str:
    """Group referers by host; empty or unparsable values count as direct traffic"""
    if not referer:
        return DIRECT_REFERER
    host = urlparse(referer).netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    return host or DIRECT_REFERER


def _upsert_summary(db: Session, values: dict) -> None:
    dialect = db.get_bind().dialect.name
    if dialect in ("sqlite", "postgresql"):
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            from sqlalchemy.dialects.postgresql import insert

        stmt = insert(AnalyticsSummary).values(created_at=values["updated_at"], **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["document_id", "date"],
            set_={key: stmt.excluded[key] for key in values if key not in ("document_id", "date")},
        )
        db.execute(stmt)
        return

    summary = db.query(AnalyticsSummary).filter(
        AnalyticsSummary.document_id == values["document_id"],
        AnalyticsSummary.date == values["date"],
    ).first()
    if summary is None:
        summary = AnalyticsSummary(created_at=values["updated_at"])
        db.add(summary)
    for key, value in values.items():
        setattr(summary, key, value)


def recompute_summary(
    db: Session,
    document_id: int,
    day: date,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> Optional[dict]:
    """
    Rebuild the (document, day) summary from raw rows.

    Returns the stored values, or None when no raw rows exist for that day;
    an existing summary is left untouched in that case so history survives
    session pruning.
    """
    start, end = day_bounds(day)

    sessions = db.query(ViewSession).join(ShareLink).filter(
        ShareLink.document_id == document_id,
        ViewSession.started_at >= start,
        ViewSession.started_at < end,
    ).all()

    email_captures = db.query(func.count(EmailCapture.id)).join(ShareLink).filter(
        ShareLink.document_id == document_id,
        EmailCapture.captured_at >= start,
        EmailCapture.captured_at < end,
    ).scalar() or 0

    if not sessions and not email_captures:
        logger.debug("No raw rows for document %s on %s", document_id, day)
        return None

    total_duration_ms = sum(s.total_duration_ms or 0 for s in sessions)
    completed_sessions = sum(1 for s in sessions if (s.total_duration_ms or 0) > 0)

    values = {
        "document_id": document_id,
        "date": day,
        "total_views": len(sessions),
        "unique_views": sum(1 for s in sessions if s.is_unique),
        "total_duration_ms": total_duration_ms,
        "completed_sessions": completed_sessions,
        "avg_duration_ms": total_duration_ms // completed_sessions if completed_sessions else 0,
        "email_captures": email_captures,
        "countries": dict(Counter(s.country or UNKNOWN for s in sessions)),
        "devices": dict(Counter(s.device or UNKNOWN for s in sessions)),
        "referers": dict(Counter(referer_key(s.referer) for s in sessions)),
        "updated_at": now or utcnow(),
    }

    _upsert_summary(db, values)
    if commit:
        db.commit()
    return values


def documents_with_activity(db: Session, day: date) -> List[int]:
    start, end = day_bounds(day)

    session_docs = db.query(ShareLink.document_id).join(ViewSession).filter(
        ViewSession.started_at >= start,
        ViewSession.started_at < end,
    )
    capture_docs = db.query(ShareLink.document_id).join(EmailCapture).filter(
        EmailCapture.captured_at >= start,
        EmailCapture.captured_at < end,
    )
    return sorted({row[0] for row in session_docs.union(capture_docs).all()})


def raw_rows_complete(day: date, now: Optional[datetime] = None) -> bool:
    """False once the retention sweeper may have pruned part of `day`'s sessions"""
    now = now or utcnow()
    window = min(settings.SESSION_RETENTION_DAYS, settings.SESSION_FALLBACK_RETENTION_DAYS)
    return day_bounds(day)[0] >= now - timedelta(days=window)


def generate_summaries_for_date(db: Session, day: date, now: Optional[datetime] = None) -> Dict[str, object]:
    """
    Recompute summaries for every document with activity on `day`.

    Safe to re-run: each row is an upsert keyed by (document, date).
    Once `day` has aged past the session retention window, existing
    summaries are kept as they are; only missing ones are built from the
    remaining raw rows.
    """
    document_ids = documents_with_activity(db, day)
    summarised = set()
    if not raw_rows_complete(day, now):
        summarised = {
            row[0] for row in db.query(AnalyticsSummary.document_id).filter(AnalyticsSummary.date == day).all()
        }

    generated = 0
    for document_id in document_ids:
        if document_id in summarised:
            continue
        recompute_summary(db, document_id, day, now=now, commit=False)
        generated += 1
    db.commit()

    skipped = len(document_ids) - generated
    if generated:
        logger.info("Generated %d analytics summaries for %s", generated, day)
    else:
        logger.debug("No summaries to generate for %s", day)
    if skipped:
        logger.info("Kept %d summaries for %s past the session retention window", skipped, day)

    return {"date": day.isoformat(), "documents": generated, "skipped": skipped}


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def session_days(db: Session) -> List[date]:
    """Calendar days that still have raw sessions or email captures"""
    days = {_as_date(row[0]) for row in db.query(func.date(ViewSession.started_at)).distinct().all() if row[0]}
    days |= {_as_date(row[0]) for row in db.query(func.date(EmailCapture.captured_at)).distinct().all() if row[0]}
    return sorted(days)


def rebaseline_global(db: Session, now: Optional[datetime] = None) -> GlobalAggregate:
    """
    Regenerate summaries for every day with raw rows, then overwrite the
    global counters with totals over the summary table. Days already past
    the session retention window keep their stored summaries.
    """
    now = now or utcnow()
    days = session_days(db)
    for day in days:
        generate_summaries_for_date(db, day, now=now)

    totals = db.query(
        func.coalesce(func.sum(AnalyticsSummary.total_views), 0),
        func.coalesce(func.sum(AnalyticsSummary.unique_views), 0),
        func.coalesce(func.sum(AnalyticsSummary.total_duration_ms), 0),
        func.coalesce(func.sum(AnalyticsSummary.completed_sessions), 0),
        func.coalesce(func.sum(AnalyticsSummary.email_captures), 0),
    ).one()
    total_views, unique_views, total_duration_ms, completed_sessions, email_captures = (int(v) for v in totals)
    total_shares = db.query(func.count(ShareLink.id)).scalar() or 0

    row = ensure_global_row(db)
    row.total_views = total_views
    row.total_unique_views = unique_views
    row.total_duration_ms = total_duration_ms
    row.completed_sessions = completed_sessions
    row.avg_session_duration_ms = total_duration_ms // completed_sessions if completed_sessions else 0
    row.total_shares = total_shares
    row.total_email_captures = email_captures
    row.last_updated = now
    db.commit()
    db.refresh(row)

    logger.info("Re-baselined global aggregate from %d days of summaries", len(days))
    return row


def previous_day(now: Optional[datetime] = None) -> date:
    return ((now or utcnow()) - timedelta(days=1)).date()
