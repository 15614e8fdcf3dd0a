from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from ..core.clock import as_naive_utc


class ShareLinkCreate(BaseModel):
    """Schema for creating a share link"""
    document_id: int = Field(..., gt=0)
    title: Optional[str] = Field(None, max_length=255)
    password: Optional[str] = Field(None, min_length=8, max_length=128)
    email_gating_enabled: bool = False
    expires_at: Optional[datetime] = None
    max_views: Optional[int] = Field(None, gt=0, le=1_000_000)

    @field_validator("expires_at")
    @classmethod
    def expires_at_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(v)


class ShareLinkUpdate(BaseModel):
    """Schema for updating share link settings"""
    title: Optional[str] = Field(None, max_length=255)
    password: Optional[str] = Field(None, min_length=8, max_length=128)
    email_gating_enabled: Optional[bool] = None
    expires_at: Optional[datetime] = None
    max_views: Optional[int] = Field(None, gt=0, le=1_000_000)
    is_active: Optional[bool] = None

    @field_validator("expires_at")
    @classmethod
    def expires_at_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(v)

    @field_validator("is_active", "email_gating_enabled")
    @classmethod
    def flag_not_null(cls, v: Optional[bool]) -> bool:
        # Omit the field to leave it unchanged
        if v is None:
            raise ValueError("Must be true or false")
        return v


class ShareLinkResponse(BaseModel):
    """Schema for share link response"""
    id: int
    document_id: int
    share_token: str
    share_url: str
    title: Optional[str] = None
    requires_password: bool
    email_gating_enabled: bool
    expires_at: Optional[datetime] = None
    max_views: Optional[int] = None
    view_count: int
    unique_view_count: int
    is_active: bool
    created_at: datetime
