from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from ..core.clock import utcnow
from ..database import Base


class EmailCapture(Base):
    """Lead captured when a viewer supplies an email at access time"""
    __tablename__ = "email_captures"

    id = Column(Integer, primary_key=True, index=True)
    share_link_id = Column(Integer, ForeignKey("share_links.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    referer = Column(String(512), nullable=True)
    captured_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    share_link = relationship("ShareLink", back_populates="email_captures")

    def __repr__(self):
        return f"<EmailCapture {self.email} for link {self.share_link_id}>"
