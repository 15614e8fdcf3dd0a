from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from ..core.clock import utcnow
from ..database import Base


class Document(Base):
    """Uploaded PDF. Blob lives in object storage under storage_key."""
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    title = Column(String(255), nullable=True)
    storage_key = Column(String(500), nullable=False)
    page_count = Column(Integer, nullable=True)  # learned from viewer page-view events
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    owner = relationship("User", back_populates="documents")
    share_links = relationship("ShareLink", back_populates="document", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Document {self.id} {self.storage_key}>"
