from typing import Dict, List, Optional
from datetime import date, datetime
from pydantic import BaseModel


class PageViewDetail(BaseModel):
    page_number: int
    previous_page: Optional[int] = None
    duration_ms: int
    scroll_depth: Optional[int] = None
    viewed_at: datetime

    class Config:
        from_attributes = True


class SessionDetail(BaseModel):
    """One viewing session with its page views, for the owner's dashboard"""
    session_id: str
    share_token: str
    viewer_email: Optional[str] = None
    viewer_name: Optional[str] = None
    country: Optional[str] = None
    device: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    referer: Optional[str] = None
    started_at: datetime
    last_active_at: datetime
    total_duration_ms: int
    is_unique: bool
    is_active: bool
    page_views: List[PageViewDetail]


class SessionListResponse(BaseModel):
    """Paginated session list"""
    items: List[SessionDetail]
    total: int
    page: int
    per_page: int


class DailySummary(BaseModel):
    document_id: int
    date: date
    total_views: int
    unique_views: int
    total_duration_ms: int
    completed_sessions: int
    avg_duration_ms: int
    email_captures: int
    countries: Dict[str, int]
    devices: Dict[str, int]
    referers: Dict[str, int]

    class Config:
        from_attributes = True


class GlobalAggregateResponse(BaseModel):
    total_views: int
    total_unique_views: int
    total_duration_ms: int
    completed_sessions: int
    avg_session_duration_ms: int
    total_shares: int
    total_email_captures: int
    last_updated: datetime

    class Config:
        from_attributes = True


class GenerateSummaryRequest(BaseModel):
    date: date
