from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator

MAX_PAGES = 10000
MAX_DURATION_SECONDS = 24 * 60 * 60


class TrackingEvent(BaseModel):
    """Base for viewer telemetry; the wire format is camelCase"""

    class Config:
        populate_by_name = True


class PageViewEvent(TrackingEvent):
    """Page transition. `duration` is the time spent on the previous page, in ms."""
    share_id: str = Field(..., alias="shareId", min_length=1, max_length=50)
    session_id: str = Field(..., alias="sessionId", min_length=1, max_length=36)
    page: int = Field(..., ge=1, le=MAX_PAGES)
    total_pages: int = Field(..., alias="totalPages", ge=1, le=MAX_PAGES)
    duration: int = Field(0, ge=0, le=MAX_DURATION_SECONDS * 1000)
    previous_page: Optional[int] = Field(None, alias="previousPage", ge=1, le=MAX_PAGES)
    scroll_depth: Optional[int] = Field(None, alias="scrollDepth", ge=0, le=100)

    @model_validator(mode="after")
    def check_page_bounds(self):
        if self.page > self.total_pages:
            raise ValueError("page must not exceed totalPages")
        if self.previous_page is not None and self.previous_page > self.total_pages:
            raise ValueError("previousPage must not exceed totalPages")
        return self


class SessionEndEvent(TrackingEvent):
    """Session termination with the client's authoritative duration"""
    share_id: str = Field(..., alias="shareId", min_length=1, max_length=50)
    session_id: str = Field(..., alias="sessionId", min_length=1, max_length=36)
    duration_seconds: int = Field(..., alias="durationSeconds", ge=0, le=MAX_DURATION_SECONDS)
    pages_viewed: int = Field(..., alias="pagesViewed", ge=0, le=MAX_PAGES)
    total_pages: int = Field(..., alias="totalPages", ge=1, le=MAX_PAGES)
    max_page_reached: int = Field(..., alias="maxPageReached", ge=1, le=MAX_PAGES)

    @model_validator(mode="after")
    def check_page_bounds(self):
        if self.max_page_reached > self.total_pages:
            raise ValueError("maxPageReached must not exceed totalPages")
        if self.pages_viewed > self.total_pages:
            raise ValueError("pagesViewed must not exceed totalPages")
        return self

    @property
    def duration_ms(self) -> int:
        return self.duration_seconds * 1000


class SessionActivityEvent(TrackingEvent):
    """Heartbeat keeping a session marked active"""
    session_id: str = Field(..., alias="sessionId", min_length=1, max_length=36)
    last_active_at: Optional[datetime] = Field(None, alias="lastActiveAt")
    current_page: Optional[int] = Field(None, alias="currentPage", ge=1, le=MAX_PAGES)
