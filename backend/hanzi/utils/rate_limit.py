"""In-memory throttle for failed login attempts."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque


class FailedLoginThrottle:
    """Sliding-window counter of failed logins per key.

    Only failures are recorded; a successful login clears the key so a
    user who finally types the right password starts from zero.
    """

    def __init__(self, window_seconds: int = 60):
        self._failures = defaultdict(deque)
        self._lock = threading.Lock()
        self._window = window_seconds

    def _prune(self, q: deque, now: float) -> None:
        cutoff = now - self._window
        while q and q[0] < cutoff:
            q.popleft()

    def check(self, key: str, max_failures: int) -> tuple[bool, int]:
        """Return `(allowed, retry_after_seconds)` for another attempt."""
        now = time.monotonic()
        with self._lock:
            q = self._failures.get(key)
            if not q:
                return True, 0
            self._prune(q, now)
            if len(q) >= max_failures:
                return False, max(1, int(self._window - (now - q[0])))
        return True, 0

    def record_failure(self, key: str) -> None:
        now = time.monotonic()
        with self._lock:
            q = self._failures[key]
            self._prune(q, now)
            q.append(now)

    def reset(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)
