from __future__ import annotations
import os, threading, time
from typing import Callable, Optional, Tuple


def _wall_millis() -> int:
    return int(time.time() * 1000)


class MillisStamp:
    """Millisecond timestamps that never repeat within the process."""

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or _wall_millis
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            now = int(self._clock())
            if now <= self._last:
                now = self._last + 1
            self._last = now
            return now


_default_stamp = MillisStamp()


def stamped_path(directory: str, prefix: str, suffix: str,
                 stamp: MillisStamp | None = None) -> Tuple[str, int]:
    """Return ``(path, millis)`` for a file name that does not exist yet."""
    stamp = stamp or _default_stamp
    os.makedirs(directory, exist_ok=True)
    while True:
        millis = stamp.next()
        path = os.path.join(directory, f"{prefix}_{millis}{suffix}")
        if not os.path.exists(path):
            return path, millis
