from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List

from loguru import logger

from .config import TELEMETRY_CAPACITY
from .pipeline_types import TelemetryEvent


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TelemetrySink:
    """
    Bounded, in-memory history of the last ``capacity`` search executions.
    Oldest events are evicted first; readers always get newest first.
    """

    def __init__(self, capacity: int = TELEMETRY_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._events: Deque[TelemetryEvent] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def record(self, event: TelemetryEvent) -> TelemetryEvent:
        stamped = event.model_copy(update={"timestamp": _utc_now_iso()}, deep=True)
        with self._lock:
            self._events.append(stamped)
        logger.debug("telemetry: recorded {} (error={})", stamped.request_id, stamped.error)
        return stamped

    def get_events(self) -> List[TelemetryEvent]:
        with self._lock:
            snapshot = list(self._events)
        return [e.model_copy(deep=True) for e in reversed(snapshot)]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
        logger.info("telemetry: cleared")

    def export(self) -> Dict[str, Any]:
        events = self.get_events()
        return {
            "exported_at": _utc_now_iso(),
            "count": len(events),
            "events": [e.model_dump(mode="json") for e in events],
        }
