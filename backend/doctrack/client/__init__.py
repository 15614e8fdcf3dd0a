"""
Viewer-side telemetry client.

Turns viewer interaction into page-view, heartbeat and session-end events,
retries failed deliveries with exponential backoff and parks undeliverable
events in a small durable queue that is replayed on the next load.
"""

from .emitter import TelemetryEmitter
from .queue import DurableEventQueue
from .retry import RetriesExhausted, retry_with_backoff
from .transport import (
    PAGE_VIEW, SESSION_ACTIVITY, SESSION_END,
    TelemetryError, TelemetryTransport, TerminalTelemetryError, TransientTelemetryError,
)

__all__ = [
    "TelemetryEmitter", "DurableEventQueue", "RetriesExhausted", "retry_with_backoff",
    "TelemetryTransport", "TelemetryError", "TerminalTelemetryError", "TransientTelemetryError",
    "PAGE_VIEW", "SESSION_ACTIVITY", "SESSION_END",
]
