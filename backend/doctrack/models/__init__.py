from .user import User
from .document import Document
from .share_link import ShareLink
from .view_session import ViewSession
from .page_view import PageView
from .email_capture import EmailCapture
from .analytics_summary import AnalyticsSummary
from .global_aggregate import GlobalAggregate, GLOBAL_AGGREGATE_ID
from .audit_log import AuditLog

__all__ = [
    "User", "Document", "ShareLink", "ViewSession", "PageView", "EmailCapture",
    "AnalyticsSummary", "GlobalAggregate", "GLOBAL_AGGREGATE_ID", "AuditLog",
]
