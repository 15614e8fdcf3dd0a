from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from ..core.clock import utcnow
from ..database import Base


class User(Base):
    """Document owner, managed by the external account service"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    documents = relationship("Document", back_populates="owner")

    def __repr__(self):
        return f"<User {self.email}>"
