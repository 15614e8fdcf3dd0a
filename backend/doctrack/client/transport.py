import json
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

PAGE_VIEW = "page_view"
SESSION_END = "session_end"
SESSION_ACTIVITY = "session_activity"

ENDPOINTS = {
    PAGE_VIEW: "/analytics/page-view",
    SESSION_END: "/analytics/session-end",
    SESSION_ACTIVITY: "/analytics/session-activity",
}

# 4xx responses that are still worth retrying
RETRYABLE_CLIENT_ERRORS = {408, 429}


class TelemetryError(Exception):
    """Delivery of a telemetry event failed"""


class TransientTelemetryError(TelemetryError):
    """Network failure, timeout, throttling or server error; retry later"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TerminalTelemetryError(TelemetryError):
    """The server rejected the event (validation, unknown session); never retried"""

    def __init__(self, message: str, status_code: int):
        self.status_code = status_code
        super().__init__(message)


def check_response(response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    message = f"{response.request.method} {response.request.url.path} returned {status}"
    if status >= 500 or status in RETRYABLE_CLIENT_ERRORS:
        raise TransientTelemetryError(message, status)
    raise TerminalTelemetryError(message, status)


class TelemetryTransport:
    """
    Posts telemetry events to the ingestion API.

    An existing ``httpx.AsyncClient`` may be passed in; it must have
    ``base_url`` set. A client created here is closed by ``aclose()``.
    """

    def __init__(self, base_url: str = "", client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def send(self, kind: str, payload: dict) -> dict:
        """
        Post one event as JSON.

        Raises:
            TransientTelemetryError: the event may succeed if retried
            TerminalTelemetryError: the server rejected the event
        """
        try:
            response = await self._client.post(ENDPOINTS[kind], json=payload)
        except httpx.HTTPError as e:
            raise TransientTelemetryError(f"{kind} delivery failed: {e}") from e
        check_response(response)
        return response.json() if response.content else {}

    async def send_beacon(self, kind: str, payload: dict) -> bool:
        """
        Single best-effort post used while the viewer is unloading.

        The body is a JSON string sent as text/plain, as browsers do for
        beacons. No retry; returns whether the server accepted it.
        """
        try:
            response = await self._client.post(
                ENDPOINTS[kind],
                content=json.dumps(payload),
                headers={"Content-Type": "text/plain;charset=UTF-8"},
            )
            check_response(response)
        except (httpx.HTTPError, TelemetryError) as e:
            logger.debug("Beacon %s failed: %s", kind, e)
            return False
        return True

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()
