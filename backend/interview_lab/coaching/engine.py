from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Awaitable, Callable

from interview_lab.coaching.advisor import Advisor
from interview_lab.coaching.heuristics import heuristic_tip, is_greeting_or_short
from interview_lab.coaching.models import CoachRequest, CoachTip
from interview_lab.core.config import COACH_COOLDOWN_MS, COACH_DEBOUNCE_MS
from interview_lab.core.logger import log_event
from interview_lab.system_metrics import increment_metric

logger = logging.getLogger("interview_lab.coaching.engine")

TipCallback = Callable[[CoachTip], Awaitable[None]]


async def advise_or_fallback(advisor: Advisor | None, request: CoachRequest) -> CoachTip:
    tip: CoachTip | None = None
    if advisor is not None:
        increment_metric("coach_requests_total")
        try:
            tip = await advisor.advise(request)
        except Exception as exc:
            logger.warning("advisor raised | err=%s", exc)
            tip = None
    if tip is None:
        increment_metric("coach_fallbacks_total")
        tip = heuristic_tip(request.current_utterance, request.last_persona_reply)
    return tip


@dataclass
class _SessionEntry:
    deliver: TipCallback
    handle: asyncio.Task | None = None
    inflight: set[asyncio.Task] = field(default_factory=set)
    last_request_at: float | None = None
    closed: bool = False


class CoachingCueEngine:
    """
    Per-session debounce handle plus an advisory cooldown.
    A later turn supersedes a pending debounce; it never stacks.
    """

    def __init__(
        self,
        advisor: Advisor | None = None,
        debounce_ms: int = COACH_DEBOUNCE_MS,
        cooldown_ms: int = COACH_COOLDOWN_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.advisor = advisor
        self.debounce_sec = max(0, int(debounce_ms)) / 1000.0
        self.cooldown_sec = max(0, int(cooldown_ms)) / 1000.0
        self._clock = clock
        self._sessions: dict[str, _SessionEntry] = {}

    def register(self, session_id: str, deliver: TipCallback) -> None:
        self._sessions[str(session_id)] = _SessionEntry(deliver=deliver)

    def is_active(self, session_id: str) -> bool:
        entry = self._sessions.get(str(session_id))
        return entry is not None and not entry.closed

    def on_interviewer_turn(self, session_id: str, request: CoachRequest) -> None:
        sid = str(session_id)
        entry = self._sessions.get(sid)
        if entry is None or entry.closed:
            return
        if entry.handle is not None and not entry.handle.done():
            entry.handle.cancel()
        entry.handle = asyncio.create_task(self._debounced(sid, entry, request))

    async def _debounced(self, session_id: str, entry: _SessionEntry, request: CoachRequest) -> None:
        await asyncio.sleep(self.debounce_sec)
        if entry.handle is asyncio.current_task():
            entry.handle = None
        task = asyncio.create_task(self._evaluate(session_id, entry, request))
        entry.inflight.add(task)
        task.add_done_callback(entry.inflight.discard)

    async def _evaluate(self, session_id: str, entry: _SessionEntry, request: CoachRequest) -> None:
        if entry.closed:
            return
        if is_greeting_or_short(request.current_utterance):
            return
        now = self._clock()
        if entry.last_request_at is not None and now - entry.last_request_at < self.cooldown_sec:
            increment_metric("coach_suppressed_total")
            log_event("coach", "cooldown_suppressed", session_id)
            return
        entry.last_request_at = now

        tip = await advise_or_fallback(self.advisor, request)
        if entry.closed or self._sessions.get(session_id) is not entry:
            log_event("coach", "stale_tip_dropped", session_id, label=tip.label)
            return
        increment_metric("coach_tips_emitted")
        log_event("coach", "tip", session_id, label=tip.label, severity=tip.severity, source=tip.source)
        try:
            await entry.deliver(tip)
        except Exception as exc:
            logger.warning("coach tip delivery failed | session_id=%s err=%s", session_id, exc)

    async def drain(self, session_id: str) -> None:
        """Wait for the pending debounce and any evaluation it started."""
        entry = self._sessions.get(str(session_id))
        if entry is None:
            return
        handle = entry.handle
        if handle is not None:
            try:
                await handle
            except asyncio.CancelledError:
                pass
        pending = list(entry.inflight)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def cancel_session(self, session_id: str) -> None:
        entry = self._sessions.pop(str(session_id), None)
        if entry is None:
            return
        entry.closed = True
        if entry.handle is not None and not entry.handle.done():
            entry.handle.cancel()
        entry.handle = None
        for task in list(entry.inflight):
            task.cancel()


class CoachRatePolicy:
    """Hint rate limits for the stateless coach endpoint."""

    def __init__(
        self,
        min_gap_ms: int = 8000,
        max_per_minute: int = 6,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_gap_sec = max(0, int(min_gap_ms)) / 1000.0
        self.max_per_minute = max(1, int(max_per_minute))
        self._clock = clock
        self._lock = Lock()
        self._counters: dict[str, dict[str, float]] = {}

    def _counter(self, session_id: str, now: float) -> dict[str, float]:
        counter = self._counters.get(session_id)
        if counter is None:
            counter = {"last_hint_at": float("-inf"), "window_start": now, "count": 0.0}
            self._counters[session_id] = counter
        if now - counter["window_start"] > 60.0:
            counter["window_start"] = now
            counter["count"] = 0.0
        return counter

    def blocked(self, session_id: str) -> bool:
        now = self._clock()
        with self._lock:
            counter = self._counter(str(session_id or "anon"), now)
            if now - counter["last_hint_at"] < self.min_gap_sec:
                return True
            return counter["count"] >= self.max_per_minute

    def note(self, session_id: str) -> None:
        now = self._clock()
        with self._lock:
            counter = self._counter(str(session_id or "anon"), now)
            counter["last_hint_at"] = now
            counter["count"] += 1
