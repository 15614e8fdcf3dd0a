import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from .transport import TelemetryError, TerminalTelemetryError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 5
# Wait before attempt n+1 is RETRY_BACKOFF[n-1] seconds
RETRY_BACKOFF = (1, 2, 4, 8, 16)


class RetriesExhausted(TelemetryError):
    def __init__(self, attempts: int, last_error: Optional[Exception]):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    attempts: int = MAX_ATTEMPTS,
    delays: Sequence[float] = RETRY_BACKOFF,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``operation`` until it succeeds, sleeping between failed attempts.

    Terminal errors propagate immediately. Cancellation during a backoff
    sleep propagates as ``asyncio.CancelledError``.

    Raises:
        RetriesExhausted: every attempt failed with a transient error
    """
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except TerminalTelemetryError:
            raise
        except TelemetryError as e:
            last_error = e
            if attempt == attempts:
                break
            delay = delays[min(attempt - 1, len(delays) - 1)]
            logger.debug("Attempt %d/%d failed (%s); retrying in %ss", attempt, attempts, e, delay)
            await sleep(delay)

    raise RetriesExhausted(attempts, last_error)
