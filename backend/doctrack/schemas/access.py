from typing import Optional
from pydantic import BaseModel, EmailStr, Field


class AccessRequest(BaseModel):
    """Viewer credentials submitted to open a share link"""
    password: Optional[str] = Field(None, max_length=128)
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=1, max_length=100)
