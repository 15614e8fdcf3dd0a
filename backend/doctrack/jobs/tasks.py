"""
Background job bodies.

Each job opens its own DB session, returns a structured result and never
raises: failures are logged and reported in the result.
"""

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from ..services import aggregator, retention, sessions

logger = logging.getLogger(__name__)


def reap_idle_sessions(session_factory: Callable[[], Session], now: datetime) -> dict:
    db = session_factory()
    try:
        return {"closed": sessions.close_idle_sessions(db, now=now)}
    finally:
        db.close()


def sweep_retention(session_factory: Callable[[], Session], now: datetime) -> dict:
    db = session_factory()
    try:
        return retention.run_retention_sweep(db, now=now)
    finally:
        db.close()


def generate_daily_summaries(session_factory: Callable[[], Session], now: datetime) -> dict:
    """Summarise the previous UTC day"""
    day = aggregator.previous_day(now)
    db = session_factory()
    try:
        return aggregator.generate_summaries_for_date(db, day, now=now)
    except Exception as e:
        db.rollback()
        logger.error("Summary generation for %s failed: %s", day, e)
        return {"date": day.isoformat(), "documents": 0, "error": str(e)}
    finally:
        db.close()
