from datetime import date, datetime, timedelta
from typing import List, Optional
from sqlalchemy import func, Integer
from sqlalchemy.orm import Session

from ..core.clock import utcnow
from ..models import AnalyticsSummary, Document, PageView, ShareLink, ViewSession

PERIODS = ("24h", "7d", "30d", "90d")


def get_period_start(period: str, now: Optional[datetime] = None) -> datetime:
    """Get start datetime for given period"""
    now = now or utcnow()
    if period == "24h":
        return now - timedelta(hours=24)
    elif period == "7d":
        return now - timedelta(days=7)
    elif period == "30d":
        return now - timedelta(days=30)
    elif period == "90d":
        return now - timedelta(days=90)
    return now - timedelta(days=7)  # default


def _document_sessions(db: Session, document_id: int, start_date: datetime):
    return db.query(ViewSession).join(ShareLink).filter(
        ShareLink.document_id == document_id,
        ViewSession.started_at >= start_date
    )


def get_views_by_day(db: Session, document_id: int, period: str, now: Optional[datetime] = None) -> List[dict]:
    """Get sessions aggregated by day"""
    start_date = get_period_start(period, now)

    results = db.query(
        func.date(ViewSession.started_at).label('date'),
        func.count(ViewSession.id).label('views'),
        func.sum(func.cast(ViewSession.is_unique, Integer)).label('unique_views'),
        func.sum(ViewSession.total_duration_ms).label('duration_ms')
    ).join(ShareLink).filter(
        ShareLink.document_id == document_id,
        ViewSession.started_at >= start_date
    ).group_by(
        func.date(ViewSession.started_at)
    ).order_by(
        func.date(ViewSession.started_at)
    ).all()

    return [
        {
            "date": row.date if isinstance(row.date, str) else row.date.isoformat() if row.date else "",
            "views": row.views,
            "unique_views": row.unique_views or 0,
            "total_duration_ms": int(row.duration_ms or 0)
        }
        for row in results
    ]


def _breakdown(db: Session, column, document_id: int, period: str, label: str, default: str,
               now: Optional[datetime] = None, limit: int = 20) -> List[dict]:
    start_date = get_period_start(period, now)

    results = db.query(
        column,
        func.count(ViewSession.id).label('views')
    ).join(ShareLink).filter(
        ShareLink.document_id == document_id,
        ViewSession.started_at >= start_date
    ).group_by(
        column
    ).order_by(
        func.count(ViewSession.id).desc()
    ).limit(limit).all()

    total = sum(row.views for row in results)

    return [
        {
            label: row[0] or default,
            "views": row.views,
            "percentage": round(row.views / total * 100, 1) if total > 0 else 0
        }
        for row in results
    ]


def get_views_by_country(db: Session, document_id: int, period: str, now: Optional[datetime] = None) -> List[dict]:
    """Get sessions aggregated by country"""
    return _breakdown(db, ViewSession.country, document_id, period, "country", "Unknown", now)


def get_views_by_device(db: Session, document_id: int, period: str, now: Optional[datetime] = None) -> List[dict]:
    return _breakdown(db, ViewSession.device, document_id, period, "device", "unknown", now)


def get_views_by_browser(db: Session, document_id: int, period: str, now: Optional[datetime] = None) -> List[dict]:
    return _breakdown(db, ViewSession.browser, document_id, period, "browser", "Other", now, limit=10)


def get_top_referers(db: Session, document_id: int, period: str, now: Optional[datetime] = None) -> List[dict]:
    """Get top referer sources"""
    return _breakdown(db, ViewSession.referer, document_id, period, "referer", "Direct", now, limit=10)


def get_page_analytics(db: Session, document_id: int, period: str, now: Optional[datetime] = None) -> List[dict]:
    """
    Per-page engagement: how often each page was opened and how long
    viewers stayed on it.

    Dwell time is carried by the page view that follows, so it is grouped
    by previous_page.
    """
    start_date = get_period_start(period, now)

    visits = db.query(
        PageView.page_number,
        func.count(PageView.id).label('views'),
        func.count(func.distinct(PageView.session_id)).label('sessions'),
        func.avg(PageView.scroll_depth).label('avg_scroll_depth')
    ).join(ViewSession).join(ShareLink).filter(
        ShareLink.document_id == document_id,
        PageView.viewed_at >= start_date
    ).group_by(
        PageView.page_number
    ).all()

    dwell = db.query(
        PageView.previous_page,
        func.sum(PageView.duration_ms).label('duration_ms'),
        func.count(PageView.id).label('samples')
    ).join(ViewSession).join(ShareLink).filter(
        ShareLink.document_id == document_id,
        PageView.viewed_at >= start_date,
        PageView.previous_page.isnot(None)
    ).group_by(
        PageView.previous_page
    ).all()

    dwell_by_page = {row.previous_page: (int(row.duration_ms or 0), row.samples) for row in dwell}
    pages = sorted({row.page_number for row in visits} | set(dwell_by_page))
    visits_by_page = {row.page_number: row for row in visits}

    result = []
    for page in pages:
        visit = visits_by_page.get(page)
        total_ms, samples = dwell_by_page.get(page, (0, 0))
        result.append({
            "page": page,
            "views": visit.views if visit else 0,
            "sessions": visit.sessions if visit else 0,
            "total_duration_ms": total_ms,
            "avg_duration_ms": total_ms // samples if samples else 0,
            "avg_scroll_depth": round(float(visit.avg_scroll_depth), 1)
            if visit is not None and visit.avg_scroll_depth is not None else None
        })
    return result


def get_document_analytics(db: Session, document: Document, period: str, now: Optional[datetime] = None) -> dict:
    """Get complete analytics for a document from raw session rows"""
    start_date = get_period_start(period, now)
    sessions = _document_sessions(db, document.id, start_date)

    total_views = sessions.count()
    unique_views = sessions.filter(ViewSession.is_unique == True).count()  # noqa: E712
    total_duration_ms = int(sessions.with_entities(
        func.coalesce(func.sum(ViewSession.total_duration_ms), 0)
    ).scalar() or 0)
    completed = sessions.filter(ViewSession.total_duration_ms > 0).count()

    return {
        "document_id": document.id,
        "title": document.title,
        "period": period,
        "total_views": total_views,
        "unique_views": unique_views,
        "unique_ratio": round(unique_views / total_views, 2) if total_views > 0 else 0,
        "total_duration_ms": total_duration_ms,
        "avg_duration_ms": total_duration_ms // completed if completed else 0,
        "views_by_day": get_views_by_day(db, document.id, period, now),
        "views_by_country": get_views_by_country(db, document.id, period, now),
        "views_by_device": get_views_by_device(db, document.id, period, now),
        "views_by_browser": get_views_by_browser(db, document.id, period, now),
        "top_referers": get_top_referers(db, document.id, period, now),
        "pages": get_page_analytics(db, document.id, period, now)
    }


def get_completion_rate(db: Session, link: ShareLink) -> float:
    """Percentage of the link's sessions that reached the document's last page"""
    page_count = link.document.page_count if link.document is not None else None
    if not page_count:
        return 0.0

    total = db.query(func.count(ViewSession.id)).filter(ViewSession.share_link_id == link.id).scalar() or 0
    if total == 0:
        return 0.0

    furthest = db.query(
        PageView.session_id,
        func.max(PageView.page_number).label('max_page')
    ).join(ViewSession).filter(
        ViewSession.share_link_id == link.id
    ).group_by(
        PageView.session_id
    ).subquery()

    completed = db.query(func.count()).select_from(furthest).filter(
        furthest.c.max_page >= page_count
    ).scalar() or 0

    return round(completed / total * 100, 1)


def get_share_stats(db: Session, link: ShareLink) -> dict:
    """Compact engagement read for one share link; camelCase for the viewer-facing API"""
    row = db.query(
        func.count(ViewSession.id).label('views'),
        func.coalesce(func.sum(func.cast(ViewSession.is_unique, Integer)), 0).label('unique_views'),
        func.coalesce(func.sum(ViewSession.total_duration_ms), 0).label('duration_ms'),
        func.coalesce(func.sum(func.cast(ViewSession.is_active, Integer)), 0).label('active')
    ).filter(
        ViewSession.share_link_id == link.id
    ).one()

    completed = db.query(func.count(ViewSession.id)).filter(
        ViewSession.share_link_id == link.id,
        ViewSession.total_duration_ms > 0
    ).scalar() or 0

    total_duration_ms = int(row.duration_ms or 0)

    return {
        "shareId": link.share_token,
        "viewCount": link.view_count,
        "uniqueViewCount": link.unique_view_count,
        "totalViews": row.views,
        "uniqueViewers": int(row.unique_views or 0),
        "totalDurationMs": total_duration_ms,
        "avgSessionDurationMs": total_duration_ms // completed if completed else 0,
        "activeSessions": int(row.active or 0),
        "completionRate": get_completion_rate(db, link)
    }


def get_summaries(db: Session, document_id: int, start: Optional[date] = None,
                  end: Optional[date] = None) -> List[AnalyticsSummary]:
    """Persisted daily summaries, oldest first"""
    query = db.query(AnalyticsSummary).filter(AnalyticsSummary.document_id == document_id)
    if start:
        query = query.filter(AnalyticsSummary.date >= start)
    if end:
        query = query.filter(AnalyticsSummary.date <= end)
    return query.order_by(AnalyticsSummary.date).all()
