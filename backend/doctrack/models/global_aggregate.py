from sqlalchemy import Column, Integer, BigInteger, DateTime
from ..core.clock import utcnow
from ..database import Base

GLOBAL_AGGREGATE_ID = 1


class GlobalAggregate(Base):
    """Singleton row of platform-wide counters, updated incrementally"""
    __tablename__ = "global_aggregate"

    id = Column(Integer, primary_key=True, default=GLOBAL_AGGREGATE_ID)
    total_views = Column(Integer, default=0, nullable=False)
    total_unique_views = Column(Integer, default=0, nullable=False)
    total_duration_ms = Column(BigInteger, default=0, nullable=False)
    completed_sessions = Column(Integer, default=0, nullable=False)
    avg_session_duration_ms = Column(Integer, default=0, nullable=False)
    total_shares = Column(Integer, default=0, nullable=False)
    total_email_captures = Column(Integer, default=0, nullable=False)
    last_updated = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<GlobalAggregate views={self.total_views} unique={self.total_unique_views}>"
