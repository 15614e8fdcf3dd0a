from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from ..core.clock import utcnow
from ..database import Base


class ShareLink(Base):
    """Tokenized, policy-constrained pointer to one document"""
    __tablename__ = "share_links"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    share_token = Column(String(50), unique=True, index=True, nullable=False)
    title = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)
    email_gating_enabled = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    max_views = Column(Integer, nullable=True)
    view_count = Column(Integer, default=0, nullable=False)
    unique_view_count = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    document = relationship("Document", back_populates="share_links")
    sessions = relationship("ViewSession", back_populates="share_link", cascade="all, delete-orphan",
                            passive_deletes=True)
    email_captures = relationship("EmailCapture", back_populates="share_link", cascade="all, delete-orphan",
                                  passive_deletes=True)

    def __repr__(self):
        return f"<ShareLink {self.share_token} -> document {self.document_id}>"
