"""Event layer: bounded in-memory replay of relayed events per (userId, processId) pair."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from threading import Lock
from typing import Any

from pydantic import BaseModel, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RelayedEvent(BaseModel):
    """Single accepted backend event kept for SSE replay."""

    id: int
    user_id: str
    process_id: str
    event: str
    terminal: bool = False
    at: str = Field(default_factory=utc_now_iso)
    data: dict[str, Any] = Field(default_factory=dict)


class ReplayBuffer:
    """Keep recent events per pair and replay them after a client's last seen id.

    Ids are global and increase across pairs, so one cursor never skips or
    repeats events of a different pair that share a process id.
    """

    def __init__(self, max_events_per_process: int = 200) -> None:
        self._max_events_per_process = max(10, max_events_per_process)
        self._pairs: dict[tuple[str, str], deque[RelayedEvent]] = {}
        self._seq = 0
        self._lock = Lock()

    def append(
        self,
        *,
        user_id: str,
        process_id: str,
        event_name: str,
        data: dict[str, Any] | None = None,
        terminal: bool = False,
    ) -> RelayedEvent:
        with self._lock:
            self._seq += 1
            event = RelayedEvent(
                id=self._seq,
                user_id=user_id,
                process_id=process_id,
                event=event_name,
                terminal=terminal,
                data=data or {},
            )
            bucket = self._pairs.setdefault(
                (user_id, process_id), deque(maxlen=self._max_events_per_process)
            )
            bucket.append(event)
            return event

    def list_events(
        self,
        user_id: str,
        process_id: str,
        last_event_id: int | None = None,
    ) -> list[RelayedEvent]:
        with self._lock:
            bucket = self._pairs.get((user_id, process_id))
            if not bucket:
                return []
            if last_event_id is None:
                return list(bucket)
            return [item for item in bucket if item.id > last_event_id]
