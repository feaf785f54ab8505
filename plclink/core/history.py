"""
Protocol History
================
Bounded, in-memory record of recent link activity for display
(connection changes, commands, dropped frames, skipped ticks).
Nothing is written to disk; the oldest entries fall off once
`max_entries` is reached.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field


@dataclass(frozen=True)
class HistoryEntry:
    kind: str
    message: str
    timestamp: float = field(default_factory=time.time)

    def format(self) -> str:
        ts = time.strftime("%H:%M:%S", time.localtime(self.timestamp))
        return f"[{ts}] {self.kind:<10s} {self.message}"


class ProtocolHistory:
    """Thread-safe ring buffer of HistoryEntry records, oldest first."""

    def __init__(self, max_entries: int = 100):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._lock = threading.Lock()
        self._entries: deque = deque(maxlen=max_entries)

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen

    def record(self, kind: str, message: str) -> HistoryEntry:
        entry = HistoryEntry(kind=kind, message=message)
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(self, kind: str = None) -> list:
        with self._lock:
            items = list(self._entries)
        if kind:
            items = [e for e in items if e.kind == kind]
        return items

    def resize(self, max_entries: int):
        """Change the capacity, keeping the newest entries."""
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        with self._lock:
            self._entries = deque(self._entries, maxlen=max_entries)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def export(self) -> str:
        return "\n".join(e.format() for e in self.entries())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
