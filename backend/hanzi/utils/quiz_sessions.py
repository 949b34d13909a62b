"""In-memory store of live quiz sessions and their auto-advance timers."""

from __future__ import annotations

import logging
import random
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from ..errors import NotFound
from ..models import Character
from ..quiz import CompletionSummary, Phase, QuizSession
from .timers import ThreadingScheduler, TimerHandle

_LOGGER = logging.getLogger("hanzi.quiz")

CompletionHook = Callable[[str, CompletionSummary], None]


@dataclass
class _Entry:
    username: str
    session: QuizSession
    touched: float
    timer: Optional[TimerHandle] = None


class QuizSessionStore:
    """Holds `QuizSession`s per user and advances them after feedback.

    Whenever an action leaves a session in the feedback phase, a timer is
    armed for `auto_advance_seconds`. The timer is bound to the question
    it was armed for: it is cancelled when the session is discarded,
    evicted or expired, and it does nothing if that question is no longer
    current when it fires. Further input during feedback is rejected by
    the session itself, so the timer is never re-armed or pushed back.

    When the last question is advanced past, `on_complete` is called
    (outside the store lock) with the owner and the summary. If it
    raises, the error text is kept on the session for the client.
    """

    def __init__(
        self,
        *,
        on_complete: CompletionHook,
        scheduler=None,
        auto_advance_seconds: float = 2.0,
        max_sessions: int = 1000,
        ttl_seconds: int = 3600,
        rng_factory: Callable[[], random.Random] = random.Random,
    ):
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.RLock()
        self._on_complete = on_complete
        self._scheduler = scheduler or ThreadingScheduler()
        self._delay = auto_advance_seconds
        self._max_sessions = max_sessions
        self._ttl_seconds = ttl_seconds
        self._rng_factory = rng_factory

    def create(self, username: str, pool: Sequence[Character]) -> tuple[str, dict]:
        self._cleanup()
        session = QuizSession(pool, rng=self._rng_factory())
        session_id = uuid.uuid4().hex
        with self._lock:
            self._entries[session_id] = _Entry(username=username, session=session, touched=time.monotonic())
            if len(self._entries) > self._max_sessions:
                oldest = sorted(self._entries.items(), key=lambda kv: kv[1].touched)
                for old_id, _ in oldest[: len(self._entries) - self._max_sessions]:
                    self._drop(old_id)
            return session_id, session.view()

    def get(self, username: str, session_id: str) -> dict:
        self._cleanup()
        with self._lock:
            entry = self._owned(username, session_id)
            entry.touched = time.monotonic()
            return entry.session.view()

    def apply(self, username: str, session_id: str, action: Callable[[QuizSession], object]) -> dict:
        """Run `action(session)` and arm the auto-advance timer if needed."""
        self._cleanup()
        with self._lock:
            entry = self._owned(username, session_id)
            entry.touched = time.monotonic()
            session = entry.session
            before = session.question_seq, session.phase
            action(session)
            if session.phase == Phase.FEEDBACK and before != (session.question_seq, Phase.FEEDBACK):
                self._arm(session_id, entry)
            elif session.phase != Phase.FEEDBACK:
                self._cancel(entry)
            return session.view()

    def discard(self, username: str, session_id: str) -> None:
        with self._lock:
            self._owned(username, session_id)
            self._drop(session_id)

    def close(self) -> None:
        """Cancel every pending timer and forget all sessions."""
        with self._lock:
            for session_id in list(self._entries):
                self._drop(session_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _owned(self, username: str, session_id: str) -> _Entry:
        entry = self._entries.get(session_id)
        if entry is None or entry.username != username:
            raise NotFound("quiz session not found")
        return entry

    def _arm(self, session_id: str, entry: _Entry) -> None:
        self._cancel(entry)
        seq = entry.session.question_seq
        entry.timer = self._scheduler.schedule(self._delay, lambda: self._auto_advance(session_id, seq))

    def _cancel(self, entry: _Entry) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None

    def _drop(self, session_id: str) -> None:
        entry = self._entries.pop(session_id, None)
        if entry is not None:
            self._cancel(entry)

    def _auto_advance(self, session_id: str, seq: int) -> None:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return
            session = entry.session
            if session.question_seq != seq or session.phase != Phase.FEEDBACK:
                return
            entry.timer = None
            completed = session.advance()
            if not completed:
                return
            username, summary = entry.username, session.summary
        _LOGGER.info("quiz completed user=%s type=%s questions=%d correct=%d",
                      username, summary.quiz_type.value, summary.total_questions, summary.correct_answers)
        error = None
        try:
            self._on_complete(username, summary)
        except Exception as exc:
            _LOGGER.exception("failed to save quiz result for %s", username)
            error = getattr(exc, "detail", None) or str(exc) or "failed to save quiz result"
        with self._lock:
            if session.summary is summary:
                session.saved = error is None
                session.save_error = error

    def _cleanup(self) -> None:
        cutoff = time.monotonic() - self._ttl_seconds
        with self._lock:
            expired = [sid for sid, e in self._entries.items() if e.touched < cutoff]
            for sid in expired:
                self._drop(sid)
