from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Index
from sqlalchemy.orm import relationship
from ..core.clock import utcnow
from ..database import Base


class ViewSession(Base):
    """One continuous viewing attempt by one visitor against one share link"""
    __tablename__ = "view_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(36), unique=True, index=True, nullable=False)
    share_link_id = Column(Integer, ForeignKey("share_links.id", ondelete="CASCADE"), nullable=False)
    viewer_email = Column(String(255), nullable=True)
    viewer_name = Column(String(255), nullable=True)
    # Never the raw IP: salted SHA-256 of the normalized address plus a coarse country
    ip_hash = Column(String(64), nullable=True)
    country = Column(String(2), nullable=True)
    user_agent = Column(String(512), nullable=True)
    referer = Column(String(512), nullable=True)
    device = Column(String(20), nullable=True)  # mobile, tablet, desktop, bot
    browser = Column(String(50), nullable=True)
    os = Column(String(50), nullable=True)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    last_active_at = Column(DateTime, default=utcnow, nullable=False)
    total_duration_ms = Column(Integer, default=0, nullable=False)
    is_unique = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    consent_given = Column(Boolean, default=True, nullable=False)
    data_retention_date = Column(DateTime, nullable=True)

    share_link = relationship("ShareLink", back_populates="sessions")
    page_views = relationship("PageView", back_populates="session", cascade="all, delete-orphan",
                              passive_deletes=True, order_by="PageView.viewed_at")

    __table_args__ = (
        Index('idx_view_sessions_link_ip', 'share_link_id', 'ip_hash'),
        Index('idx_view_sessions_started_at', 'started_at'),
        Index('idx_view_sessions_active', 'is_active', 'last_active_at'),
        Index('idx_view_sessions_retention', 'data_retention_date'),
    )

    def __repr__(self):
        return f"<ViewSession {self.session_id} for link {self.share_link_id}>"
