from sqlalchemy import Column, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from ..core.clock import utcnow
from ..database import Base


class PageView(Base):
    """Page visit within a session. Append-only."""
    __tablename__ = "page_views"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("view_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    page_number = Column(Integer, nullable=False)
    # Time spent on previous_page before navigating here; 0 on the entry page
    previous_page = Column(Integer, nullable=True)
    duration_ms = Column(Integer, default=0, nullable=False)
    scroll_depth = Column(Integer, nullable=True)
    viewed_at = Column(DateTime, default=utcnow, nullable=False)

    session = relationship("ViewSession", back_populates="page_views")

    def __repr__(self):
        return f"<PageView page {self.page_number} in session {self.session_id}>"
