"""
Durable event queue.

A bounded FIFO persisted as a JSON file. Events that exhausted their
in-page retries are parked here and replayed on the next load; each entry
has its own retry ceiling after which it is dropped.
"""

import json
import logging
import os
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, List, Union

from .transport import PAGE_VIEW, SESSION_END, TelemetryError, TerminalTelemetryError

logger = logging.getLogger(__name__)

MAX_ENTRIES = 50
MAX_RETRIES = 5

# Heartbeats are never parked: replaying one later would re-activate a stale session
QUEUEABLE_EVENTS = frozenset({PAGE_VIEW, SESSION_END})


class DurableEventQueue:
    def __init__(self, path: Union[str, Path], max_entries: int = MAX_ENTRIES, max_retries: int = MAX_RETRIES):
        self.path = Path(path)
        self.max_entries = max_entries
        self.max_retries = max_retries
        self._entries = self._load()

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> List[dict]:
        return [dict(entry) for entry in self._entries]

    def _load(self) -> List[dict]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Discarding unreadable event queue %s: %s", self.path, e)
            return []
        if not isinstance(data, list):
            logger.warning("Discarding malformed event queue %s", self.path)
            return []
        return [entry for entry in data if isinstance(entry, dict) and entry.get("kind") in QUEUEABLE_EVENTS]

    def _save(self) -> None:
        """Write the whole queue to a temp file and swap it in"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".queue-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._entries, f)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def enqueue(self, kind: str, payload: dict) -> dict:
        """
        Append an event, evicting the oldest entries beyond the cap.

        Raises:
            ValueError: the event kind is not queueable
        """
        if kind not in QUEUEABLE_EVENTS:
            raise ValueError(f"{kind} events are not queued")

        entry = {
            "id": str(uuid.uuid4()),
            "kind": kind,
            "payload": payload,
            "retries": 0,
            "queued_at": datetime.now(timezone.utc).isoformat(),
        }
        self._entries.append(entry)

        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            logger.info("Event queue full, evicting %d oldest entries", overflow)
            del self._entries[:overflow]

        self._save()
        return entry

    async def flush(self, send: Callable[[str, dict], Awaitable[object]]) -> dict:
        """
        Try every queued event once, oldest first.

        Delivered and rejected events are removed; failed ones stay with
        their retry count bumped until they hit the ceiling.
        """
        result = {"sent": 0, "failed": 0, "dropped": 0}
        if not self._entries:
            return result

        remaining = []
        for entry in self._entries:
            try:
                await send(entry["kind"], entry["payload"])
            except TerminalTelemetryError as e:
                logger.info("Dropping queued %s rejected by server: %s", entry["kind"], e)
                result["dropped"] += 1
                continue
            except TelemetryError as e:
                entry["retries"] = entry.get("retries", 0) + 1
                if entry["retries"] >= self.max_retries:
                    logger.info("Dropping queued %s after %d retries: %s", entry["kind"], entry["retries"], e)
                    result["dropped"] += 1
                else:
                    result["failed"] += 1
                    remaining.append(entry)
                continue
            result["sent"] += 1

        self._entries = remaining
        self._save()
        return result

    def clear(self) -> None:
        self._entries = []
        self._save()
