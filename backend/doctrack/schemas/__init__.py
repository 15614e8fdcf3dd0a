from .access import AccessRequest
from .tracking import PageViewEvent, SessionEndEvent, SessionActivityEvent
from .share import ShareLinkCreate, ShareLinkUpdate, ShareLinkResponse

__all__ = [
    "AccessRequest", "PageViewEvent", "SessionEndEvent", "SessionActivityEvent",
    "ShareLinkCreate", "ShareLinkUpdate", "ShareLinkResponse",
]
