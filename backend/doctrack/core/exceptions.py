from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
import logging

logger = logging.getLogger(__name__)

# reason -> (HTTP status, user-facing message)
ACCESS_DENIED_REASONS = {
    "not_found": (404, "Share link not found"),
    "disabled": (403, "Share link is disabled"),
    "expired": (410, "Share link has expired"),
    "limit_reached": (403, "Share link view limit reached"),
    "invalid_password": (401, "Invalid password"),
    "email_required": (400, "Email required to access this file"),
}


class AccessDenied(Exception):
    """Raised by the access gate; carries one of ACCESS_DENIED_REASONS."""

    def __init__(self, reason: str):
        if reason not in ACCESS_DENIED_REASONS:
            raise ValueError(f"Unknown access denial reason: {reason}")
        self.reason = reason
        self.status_code, self.message = ACCESS_DENIED_REASONS[reason]
        super().__init__(self.message)


class SessionNotFound(Exception):
    """Tracking event referenced a session that does not exist for the share link."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


def format_validation_errors(errors) -> list[dict]:
    """Flatten pydantic errors into field/message pairs."""
    formatted = []
    for error in errors:
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        formatted.append({
            "field": ".".join(location) or None,
            "message": error.get("msg", "Invalid value"),
        })
    return formatted


async def access_denied_handler(request: Request, exc: AccessDenied):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.reason},
    )


async def session_not_found_handler(request: Request, exc: SessionNotFound):
    return JSONResponse(status_code=404, content={"detail": "Session not found"})


async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": format_validation_errors(exc.errors())},
    )


async def datastore_unavailable_handler(request: Request, exc: OperationalError):
    logger.error("Datastore unavailable on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Service temporarily unavailable"},
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(AccessDenied, access_denied_handler)
    app.add_exception_handler(SessionNotFound, session_not_found_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(OperationalError, datastore_unavailable_handler)
