from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON, Index
from ..core.clock import utcnow
from ..database import Base


class AuditLog(Base):
    """Security and compliance event. Written best-effort, never blocks a request."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    event = Column(String(50), nullable=False, index=True)
    document_id = Column(Integer, nullable=True, index=True)
    share_token = Column(String(50), nullable=True, index=True)
    user_id = Column(Integer, nullable=True)
    ip_hash = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    email = Column(String(255), nullable=True)
    success = Column(Boolean, nullable=True)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index('idx_audit_logs_share_ip_time', 'share_token', 'ip_hash', 'created_at'),
    )

    def __repr__(self):
        return f"<AuditLog {self.event} at {self.created_at}>"
