"""Cancellable delayed callbacks used by the quiz auto-advance."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

_LOGGER = logging.getLogger("hanzi.quiz")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class ThreadingScheduler:
    """Run callbacks on daemon `threading.Timer` threads."""

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        def _run():
            try:
                callback()
            except Exception:
                _LOGGER.exception("scheduled callback failed")

        timer = threading.Timer(delay, _run)
        timer.daemon = True
        timer.start()
        return timer
