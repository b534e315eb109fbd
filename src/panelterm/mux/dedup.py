"""Suppression of re-delivered output chunks.

The host push channel is at-least-once: the same chunk for a session can
arrive twice in quick succession. Identical payloads are only suppressed
inside a short window so that legitimately repeated output (a redrawn
prompt, say) still reaches the screen.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass
class DedupRecord:
    last_payload: bytes
    last_seen_at: float


class OutputDeduplicator:
    def __init__(self, window: float = 0.1, clock: Optional[Callable[[], float]] = None):
        """Initialize the deduplicator.

        Args:
            window: Seconds during which an identical payload is suppressed
            clock: Monotonic time source, injectable for tests
        """
        self.window = window
        self._clock = clock or time.monotonic
        self._records: Dict[int, DedupRecord] = {}

    def should_deliver(self, session_id: int, payload: bytes) -> bool:
        now = self._clock()
        record = self._records.get(session_id)
        if (
            record is not None
            and record.last_payload == payload
            and now - record.last_seen_at < self.window
        ):
            return False
        self._records[session_id] = DedupRecord(last_payload=payload, last_seen_at=now)
        return True

    def forget(self, session_id: int) -> None:
        self._records.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._records)
