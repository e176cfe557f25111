"""Bounded, dated audit history kept on every fused account."""

import threading
from collections import deque
from datetime import date, datetime, timezone
from typing import Callable, Deque, Iterable, List, Optional


def _today() -> date:
    return datetime.now(timezone.utc).date()


class AuditHistory:
    """Ordered audit entries of the form ``[YYYY-MM-DD] message``.

    Holds at most ``limit`` entries; appending beyond that evicts the oldest.
    Append and eviction happen under one lock.
    """

    def __init__(
        self,
        limit: int = 50,
        entries: Optional[Iterable[str]] = None,
        clock: Callable[[], date] = _today,
    ):
        if limit < 1:
            raise ValueError("history limit must be at least 1")
        self.limit = limit
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Deque[str] = deque(entries or (), maxlen=limit)

    def append(self, message: str) -> str:
        entry = f"[{self._clock().isoformat()}] {message}"
        with self._lock:
            self._entries.append(entry)
        return entry

    @property
    def entries(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    @property
    def latest(self) -> Optional[str]:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self.entries)
