"""
Access gate: validates a share link and opens a viewing session.

Checks run in a fixed order (exists, active, not expired, view cap,
password, email) and each failure raises AccessDenied with its reason.
The view cap is enforced again by the conditional counter update itself,
so two viewers racing for the last view cannot both get in.
"""

import logging
from datetime import datetime
from typing import NamedTuple, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from ..core.clock import utcnow
from ..core.exceptions import AccessDenied
from ..core.security import create_document_handle, verify_password
from ..core.tokens import generate_session_id
from ..models import Document, EmailCapture, ShareLink, ViewSession
from ..utils.geo import get_country
from ..utils.privacy import hash_ip, retention_date
from ..utils.user_agent import parse_user_agent
from . import aggregator, audit

logger = logging.getLogger(__name__)


class AccessGrant(NamedTuple):
    session: ViewSession
    link: ShareLink
    document: Document
    document_handle: str
    is_unique: bool


def validate_link(db: Session, share_token: str, now: Optional[datetime] = None) -> ShareLink:
    """
    Run the credential-free checks: exists, active, not expired, view cap.

    Raises:
        AccessDenied: with reason not_found, disabled, expired or limit_reached
    """
    now = now or utcnow()
    link = db.query(ShareLink).filter(ShareLink.share_token == share_token).first()

    if link is None:
        raise AccessDenied("not_found")
    if not link.is_active:
        raise AccessDenied("disabled")
    if link.expires_at is not None and link.expires_at <= now:
        raise AccessDenied("expired")
    if link.max_views is not None and link.view_count >= link.max_views:
        raise AccessDenied("limit_reached")

    return link


def is_unique_visitor(db: Session, share_link_id: int, ip_hash: str, email: Optional[str] = None) -> bool:
    """True when no earlier session on this link has the same IP hash (and email, if given)"""
    query = db.query(ViewSession.id).filter(
        ViewSession.share_link_id == share_link_id,
        ViewSession.ip_hash == ip_hash,
    )
    if email:
        query = query.filter(ViewSession.viewer_email == email)
    return query.first() is None


def _claim_view(db: Session, link_id: int, is_unique: bool, now: datetime) -> bool:
    """Increment the link counters unless the view cap is already reached"""
    result = db.execute(
        update(ShareLink)
        .where(and_(
            ShareLink.id == link_id,
            or_(ShareLink.max_views.is_(None), ShareLink.view_count < ShareLink.max_views),
        ))
        .values(
            view_count=ShareLink.view_count + 1,
            unique_view_count=ShareLink.unique_view_count + (1 if is_unique else 0),
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def grant_access(
    db: Session,
    share_token: str,
    *,
    password: Optional[str] = None,
    email: Optional[str] = None,
    name: Optional[str] = None,
    ip: str = "",
    user_agent: str = "",
    referer: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AccessGrant:
    """
    Validate access to a share link and create the viewing session.

    Raises:
        AccessDenied: if any check fails; the attempt is audited either way
    """
    now = now or utcnow()
    ip_hash = hash_ip(ip)
    email = email.strip().lower() if email else None
    user_agent = (user_agent or "")[:512]

    def denied(reason: str, link: Optional[ShareLink] = None) -> AccessDenied:
        audit.log_access_attempt(
            share_token,
            False,
            document_id=link.document_id if link is not None else None,
            ip_hash=ip_hash,
            user_agent=user_agent,
            email=email,
            reason=reason,
            now=now,
        )
        logger.info("Access to share link %s denied: %s", share_token, reason)
        return AccessDenied(reason)

    try:
        link = validate_link(db, share_token, now=now)
    except AccessDenied as e:
        raise denied(e.reason)

    if link.password_hash and (not password or not verify_password(password, link.password_hash)):
        raise denied("invalid_password", link)

    if link.email_gating_enabled and not email:
        raise denied("email_required", link)

    is_unique = is_unique_visitor(db, link.id, ip_hash, email)

    if not _claim_view(db, link.id, is_unique, now):
        db.rollback()
        raise denied("limit_reached", link)

    client = parse_user_agent(user_agent)
    session = ViewSession(
        session_id=generate_session_id(),
        share_link_id=link.id,
        viewer_email=email,
        viewer_name=name,
        ip_hash=ip_hash,
        country=get_country(ip),
        user_agent=user_agent or None,
        referer=(referer or "")[:512] or None,
        device=client.device,
        browser=client.browser,
        os=client.os,
        started_at=now,
        last_active_at=now,
        total_duration_ms=0,
        is_unique=is_unique,
        is_active=True,
        consent_given=True,
        data_retention_date=retention_date(now),
    )
    db.add(session)

    captured = bool(email and link.email_gating_enabled)
    if captured:
        db.add(EmailCapture(
            share_link_id=link.id,
            email=email,
            name=name,
            referer=session.referer,
            captured_at=now,
        ))

    db.commit()
    db.refresh(session)
    db.refresh(link)

    aggregator.record_view(db, is_unique, now=now)
    if captured:
        aggregator.record_email_capture(db, now=now)

    audit.log_access_attempt(
        share_token,
        True,
        document_id=link.document_id,
        ip_hash=ip_hash,
        user_agent=user_agent,
        email=email,
        session_id=session.session_id,
        now=now,
    )

    document = link.document
    handle = create_document_handle(share_token, session.session_id, document.id, now=now)

    logger.info("Opened session %s on share link %s (unique=%s)", session.session_id, share_token, is_unique)
    return AccessGrant(session=session, link=link, document=document, document_handle=handle, is_unique=is_unique)
