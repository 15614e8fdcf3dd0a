from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..core.exceptions import AccessDenied
from ..core.rate_limit import limiter
from ..core.security import get_current_user, get_password_hash, verify_document_handle
from ..core.tokens import generate_share_token
from ..database import get_db
from ..models import Document, ShareLink, User
from ..schemas.access import AccessRequest
from ..schemas.share import ShareLinkCreate, ShareLinkResponse, ShareLinkUpdate
from ..services import aggregator, audit
from ..services.access_gate import grant_access, validate_link
from ..services.storage import object_url
from ..utils.request import get_client_ip

router = APIRouter(tags=["share"])


def serialize_link(link: ShareLink) -> dict:
    return {
        "id": link.id,
        "document_id": link.document_id,
        "share_token": link.share_token,
        "share_url": f"{settings.BASE_URL}/s/{link.share_token}",
        "title": link.title,
        "requires_password": link.password_hash is not None,
        "email_gating_enabled": link.email_gating_enabled,
        "expires_at": link.expires_at,
        "max_views": link.max_views,
        "view_count": link.view_count,
        "unique_view_count": link.unique_view_count,
        "is_active": link.is_active,
        "created_at": link.created_at,
    }


def get_owned_link(db: Session, share_id: str, user: User) -> ShareLink:
    link = db.query(ShareLink).filter(ShareLink.share_token == share_id).first()
    if not link or link.document is None or link.document.owner_id != user.id:
        raise HTTPException(status_code=404, detail="Share link not found")
    return link


@router.post("/share", response_model=ShareLinkResponse, status_code=status.HTTP_201_CREATED)
async def create_share_link(
    link_data: ShareLinkCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Create a share link for one of the owner's documents.

    Requires authentication.
    """
    document = db.query(Document).filter(Document.id == link_data.document_id).first()
    if not document or document.owner_id != current_user.id:
        raise HTTPException(status_code=404, detail="Document not found")

    try:
        share_token = generate_share_token(db=db)
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e))

    link = ShareLink(
        document_id=document.id,
        share_token=share_token,
        title=link_data.title or document.title,
        password_hash=get_password_hash(link_data.password) if link_data.password else None,
        email_gating_enabled=link_data.email_gating_enabled,
        expires_at=link_data.expires_at,
        max_views=link_data.max_views
    )

    db.add(link)
    db.commit()
    db.refresh(link)

    aggregator.record_share(db)
    background_tasks.add_task(
        audit.log_share_link_created,
        share_token,
        document.id,
        current_user.id,
        details={
            "password_protected": link.password_hash is not None,
            "email_gating_enabled": link.email_gating_enabled,
            "max_views": link.max_views,
        }
    )

    return serialize_link(link)


@router.patch("/share/{share_id}", response_model=ShareLinkResponse)
async def update_share_link(
    share_id: str,
    link_data: ShareLinkUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Update share link settings.

    Sending "password": null removes password protection.
    """
    link = get_owned_link(db, share_id, current_user)

    update_data = link_data.model_dump(exclude_unset=True)
    if "password" in update_data:
        password = update_data.pop("password")
        link.password_hash = get_password_hash(password) if password else None

    for field, value in update_data.items():
        setattr(link, field, value)

    db.commit()
    db.refresh(link)

    return serialize_link(link)


@router.get("/share/{share_id}")
@limiter.limit(settings.STATS_RATE_LIMIT)
async def get_share_info(
    share_id: str,
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Public link info for the viewer's landing screen.

    Runs the same checks as access, without opening a session.
    """
    link = validate_link(db, share_id)
    document = link.document

    return {
        "shareId": link.share_token,
        "title": link.title or document.title,
        "requiresPassword": link.password_hash is not None,
        "emailGatingEnabled": link.email_gating_enabled,
        "expiresAt": link.expires_at.isoformat() if link.expires_at else None,
        "document": {
            "id": document.id,
            "title": document.title,
            "pageCount": document.page_count
        }
    }


@router.post("/share/{share_id}/access")
@limiter.limit(settings.ACCESS_RATE_LIMIT)
async def access_share_link(
    share_id: str,
    request: Request,
    access: Optional[AccessRequest] = None,
    db: Session = Depends(get_db)
):
    """
    Validate a share link and open a viewing session.

    Returns the session id the viewer reports telemetry against and a
    short-lived handle for fetching the document.
    """
    access = access or AccessRequest()

    grant = grant_access(
        db,
        share_id,
        password=access.password,
        email=str(access.email) if access.email else None,
        name=access.name,
        ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent", ""),
        referer=request.headers.get("referer")
    )

    return {
        "sessionId": grant.session.session_id,
        "documentHandle": grant.document_handle,
        "isUnique": grant.is_unique,
        "expiresIn": settings.DOCUMENT_HANDLE_EXPIRE_SECONDS,
        "document": {
            "id": grant.document.id,
            "title": grant.link.title or grant.document.title,
            "pageCount": grant.document.page_count
        }
    }


@router.get("/share/{share_id}/document")
async def get_shared_document(
    share_id: str,
    handle: str = Query(..., min_length=1),
    db: Session = Depends(get_db)
):
    """Redirect a viewer holding a valid handle to the document blob"""
    payload = verify_document_handle(handle, share_id)
    if payload is None:
        raise HTTPException(status_code=403, detail="Invalid or expired document handle")

    link = db.query(ShareLink).filter(ShareLink.share_token == share_id).first()
    if not link:
        raise AccessDenied("not_found")
    if not link.is_active:
        raise AccessDenied("disabled")

    document = link.document
    if document is None or document.id != payload.get("doc"):
        raise HTTPException(status_code=404, detail="Document not found")

    # 302 so every fetch goes through handle verification
    return RedirectResponse(url=object_url(document.storage_key), status_code=302)
