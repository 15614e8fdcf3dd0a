from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..core.security import get_current_user
from ..database import get_db
from ..models import Document, User
from ..schemas.analytics import DailySummary, GlobalAggregateResponse, SessionListResponse
from ..services import aggregator, audit
from ..services.analytics import PERIODS, get_document_analytics, get_summaries
from ..services.sessions import list_sessions, serialize_session

router = APIRouter(prefix="/analytics", tags=["analytics"])


def get_owned_document(db: Session, document_id: int, user: User) -> Document:
    document = db.query(Document).filter(Document.id == document_id).first()
    if not document or document.owner_id != user.id:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


@router.get("/documents/{document_id}/sessions", response_model=SessionListResponse)
async def get_document_sessions(
    document_id: int,
    email: Optional[str] = None,
    device: Optional[str] = Query(None, description="Filter by device type: desktop, mobile, tablet, bot"),
    country: Optional[str] = Query(None, min_length=2, max_length=2),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Viewing sessions with their page views, newest first.

    Requires authentication.
    """
    get_owned_document(db, document_id, current_user)

    items, total = list_sessions(
        db,
        document_id,
        email=email,
        device=device,
        country=country,
        start_date=start_date,
        end_date=end_date,
        page=page,
        per_page=per_page
    )

    return {
        "items": [serialize_session(session) for session in items],
        "total": total,
        "page": page,
        "per_page": per_page
    }


@router.get("/documents/{document_id}")
async def get_document_analytics_endpoint(
    document_id: int,
    period: str = Query("7d", description="Period: 24h, 7d, 30d, 90d"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Period analytics computed from raw session rows"""
    if period not in PERIODS:
        raise HTTPException(status_code=400, detail=f"Invalid period. Use one of: {', '.join(PERIODS)}")

    document = get_owned_document(db, document_id, current_user)
    return get_document_analytics(db, document, period)


@router.get("/documents/{document_id}/summaries", response_model=List[DailySummary])
async def get_document_summaries(
    document_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Persisted daily summaries; these outlive raw sessions"""
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")

    get_owned_document(db, document_id, current_user)
    return get_summaries(db, document_id, start, end)


@router.get("/documents/{document_id}/security")
async def get_document_security(
    document_id: int,
    hours: int = Query(24, ge=1, le=24 * 30),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    get_owned_document(db, document_id, current_user)

    return {
        "document_id": document_id,
        "unique_ips": audit.get_unique_ip_count(db, document_id),
        "suspicious_activity": audit.get_recent_suspicious_activity(db, document_id, hours=hours)
    }


@router.get("/global", response_model=GlobalAggregateResponse)
async def get_global_aggregate(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Platform-wide counters maintained incrementally"""
    return aggregator.get_global(db)
