"""
Telemetry emitter state machine.

    page-active(n) -> page-active(m)   on navigation, emits page_view
    page-active    -> session-ending   on unload, hide or idle timeout
    session-ending -> terminated       after the single session_end is handed off

Each page_view carries the time spent on the page being left, in ms; the
first one of a session carries 0. Termination may be triggered several
times; only the first trigger emits.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from .queue import QUEUEABLE_EVENTS, DurableEventQueue
from .retry import RetriesExhausted, retry_with_backoff
from .transport import PAGE_VIEW, SESSION_ACTIVITY, SESSION_END, TelemetryTransport, TerminalTelemetryError

logger = logging.getLogger(__name__)

PAGE_ACTIVE = "page-active"
SESSION_ENDING = "session-ending"
TERMINATED = "terminated"

HEARTBEAT_INTERVAL = 60
LIVENESS_INTERVAL = 30
MIN_SESSION_SECONDS = 30
IDLE_TIMEOUT = 60


class TelemetryEmitter:
    def __init__(
        self,
        transport: TelemetryTransport,
        share_id: str,
        session_id: str,
        total_pages: int,
        queue: Optional[DurableEventQueue] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        liveness_interval: float = LIVENESS_INTERVAL,
        min_session_seconds: float = MIN_SESSION_SECONDS,
        idle_timeout: float = IDLE_TIMEOUT,
    ):
        self.transport = transport
        self.share_id = share_id
        self.session_id = session_id
        self.total_pages = total_pages
        self.queue = queue
        self.clock = clock
        self.sleep = sleep
        self.heartbeat_interval = heartbeat_interval
        self.liveness_interval = liveness_interval
        self.min_session_seconds = min_session_seconds
        self.idle_timeout = idle_timeout

        self.state: Optional[str] = None
        self.current_page: Optional[int] = None
        self.pages_visited: Set[int] = set()
        self.max_page_reached = 0
        self.session_started_at: Optional[float] = None
        self.page_started_at: Optional[float] = None
        self.last_activity_at: Optional[float] = None
        self.last_heartbeat_at: Optional[float] = None

        self._pending: Dict[asyncio.Task, Tuple[str, dict]] = {}

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def start(self, page: int = 1) -> asyncio.Task:
        """Replay events parked by an earlier load, then show the entry page"""
        if self.queue is not None and len(self.queue):
            result = await self.queue.flush(self.transport.send)
            logger.debug("Replayed queued telemetry: %s", result)

        now = self.clock()
        self.session_started_at = now
        self.last_activity_at = now
        self.last_heartbeat_at = now
        return self.show_page(page)

    def show_page(self, page: int) -> Optional[asyncio.Task]:
        """Enter a page and emit its page_view; returns the delivery task"""
        if self.state not in (None, PAGE_ACTIVE):
            return None
        if self.state == PAGE_ACTIVE and page == self.current_page:
            return None

        now = self.clock()
        previous_page = self.current_page
        duration_ms = 0 if previous_page is None else int((now - self.page_started_at) * 1000)

        self.state = PAGE_ACTIVE
        self.current_page = page
        self.page_started_at = now
        self.last_activity_at = now
        self.pages_visited.add(page)
        self.max_page_reached = max(self.max_page_reached, page)

        payload = {
            "shareId": self.share_id,
            "sessionId": self.session_id,
            "page": page,
            "totalPages": self.total_pages,
            "duration": max(duration_ms, 0),
        }
        if previous_page is not None:
            payload["previousPage"] = previous_page
        return self._dispatch(PAGE_VIEW, payload)

    def record_activity(self) -> Optional[asyncio.Task]:
        """Scroll, mouse or key activity; sends a throttled heartbeat"""
        if self.state != PAGE_ACTIVE:
            return None

        now = self.clock()
        self.last_activity_at = now
        if self.last_heartbeat_at is not None and now - self.last_heartbeat_at < self.heartbeat_interval:
            return None

        self.last_heartbeat_at = now
        return self._dispatch(SESSION_ACTIVITY, {
            "sessionId": self.session_id,
            "currentPage": self.current_page,
        })

    def session_end_payload(self) -> dict:
        elapsed = self.clock() - self.session_started_at
        return {
            "shareId": self.share_id,
            "sessionId": self.session_id,
            "durationSeconds": max(int(elapsed), 0),
            "pagesViewed": len(self.pages_visited),
            "totalPages": self.total_pages,
            "maxPageReached": max(self.max_page_reached, 1),
        }

    def end(self, reason: str = "hidden") -> Optional[asyncio.Task]:
        """
        Emit the session_end event through the retrying path.

        Only the first call while a page is active emits.
        """
        if self.state != PAGE_ACTIVE:
            return None

        self.state = SESSION_ENDING
        payload = self.session_end_payload()
        logger.debug("Ending session %s (%s)", self.session_id, reason)
        task = self._dispatch(SESSION_END, payload)
        self.state = TERMINATED
        return task

    async def unload(self) -> bool:
        """
        Page is being torn down: send session_end as a single beacon.

        A failed beacon is parked in the durable queue. Returns whether the
        beacon was accepted.
        """
        if self.state != PAGE_ACTIVE:
            return False

        self.state = SESSION_ENDING
        payload = self.session_end_payload()
        self.state = TERMINATED

        if await self.transport.send_beacon(SESSION_END, payload):
            return True
        self._park(SESSION_END, payload)
        return False

    def check_liveness(self) -> Optional[asyncio.Task]:
        """End a session that has run long enough and gone idle"""
        if self.state != PAGE_ACTIVE:
            return None

        now = self.clock()
        if now - self.session_started_at <= self.min_session_seconds:
            return None
        if now - self.last_activity_at < self.idle_timeout:
            return None
        return self.end("idle")

    async def run_liveness_loop(self) -> None:
        while self.state == PAGE_ACTIVE:
            await self.sleep(self.liveness_interval)
            self.check_liveness()

    async def close(self) -> None:
        """
        Navigation away: cancel in-flight retries and park their events in
        the durable queue so the next load can replay them.
        """
        for task, (kind, payload) in list(self._pending.items()):
            if task.done():
                continue
            task.cancel()
            self._park(kind, payload)

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()

    async def drain(self) -> None:
        """Wait for every in-flight delivery to finish"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _dispatch(self, kind: str, payload: dict) -> asyncio.Task:
        task = asyncio.ensure_future(self._deliver(kind, payload))
        self._pending[task] = (kind, payload)
        task.add_done_callback(lambda t: self._pending.pop(t, None))
        return task

    async def _deliver(self, kind: str, payload: dict) -> bool:
        try:
            await retry_with_backoff(lambda: self.transport.send(kind, payload), sleep=self.sleep)
        except TerminalTelemetryError as e:
            logger.warning("Server rejected %s for session %s: %s", kind, self.session_id, e)
            return False
        except RetriesExhausted as e:
            logger.info("Could not deliver %s for session %s: %s", kind, self.session_id, e)
            self._park(kind, payload)
            return False
        return True

    def _park(self, kind: str, payload: dict) -> None:
        if kind not in QUEUEABLE_EVENTS:
            logger.debug("Dropping undeliverable %s", kind)
            return
        if self.queue is None:
            logger.warning("No durable queue configured; dropping %s", kind)
            return
        self.queue.enqueue(kind, payload)
