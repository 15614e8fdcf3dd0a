from sqlalchemy import Column, Integer, Date, DateTime, ForeignKey, JSON, UniqueConstraint, Index
from ..core.clock import utcnow
from ..database import Base


class AnalyticsSummary(Base):
    """Per-document, per-day rollup recomputed from raw session rows"""
    __tablename__ = "analytics_summary"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    total_views = Column(Integer, default=0, nullable=False)
    unique_views = Column(Integer, default=0, nullable=False)
    total_duration_ms = Column(Integer, default=0, nullable=False)
    completed_sessions = Column(Integer, default=0, nullable=False)  # sessions that reported a duration
    avg_duration_ms = Column(Integer, default=0, nullable=False)
    email_captures = Column(Integer, default=0, nullable=False)
    countries = Column(JSON, default=dict)  # country code -> count
    devices = Column(JSON, default=dict)  # device type -> count
    referers = Column(JSON, default=dict)  # referer -> count
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('document_id', 'date', name='uix_summary_document_date'),
        Index('idx_analytics_summary_date', 'date'),
    )

    def __repr__(self):
        return f"<AnalyticsSummary document {self.document_id} on {self.date}>"
