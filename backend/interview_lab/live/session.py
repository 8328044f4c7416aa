from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable

from interview_lab.coaching import CoachingCueEngine, CoachRequest, CoachTip
from interview_lab.core.logger import log_event
from interview_lab.core.state import ConnectionState
from interview_lab.finalization import FinalizeResult, SessionFinalizer
from interview_lab.ingestion import (
    AssistantText,
    AudioOutput,
    Emotion,
    ROLE_INTERVIEWER,
    Turn,
    TurnLog,
    Unknown,
    UserText,
    decode_event,
    now_ms,
)
from interview_lab.live.audio import AudioSink
from interview_lab.live.connection import ConnectionStateMachine
from interview_lab.live.credentials import CredentialService
from interview_lab.live.transport import Transport
from interview_lab.persona import PersonaKnobs, derive_knobs
from interview_lab.sensitivity import (
    FactStore,
    SensitivityScore,
    build_fact_guidance,
    build_guidance_preface,
    score_utterance,
)

logger = logging.getLogger("interview_lab.live.session")

OutputCallback = Callable[[dict[str, Any]], Awaitable[None]]


async def _discard_output(message: dict[str, Any]) -> None:
    return None


class LiveSession:
    """
    One interview: connection, turn log, fact store and coaching for a single session id.
    Transport events reach the session only through the machine's queue, consumed by one task.
    """

    def __init__(
        self,
        session_id: str,
        credentials: CredentialService,
        transport_factory: Callable[[], Transport],
        sink: AudioSink,
        finalizer: SessionFinalizer,
        coach: CoachingCueEngine | None = None,
        output: OutputCallback | None = None,
        acquire_media: Callable[[], Awaitable[None]] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session_id = str(session_id)
        self.machine = ConnectionStateMachine(
            self.session_id,
            credentials,
            transport_factory,
            sink,
            acquire_media=acquire_media,
        )
        self.machine.add_listener(self._on_state)
        self.finalizer = finalizer
        self.coach = coach
        self._output = output or _discard_output
        self._sleep = sleep
        self.turn_log = TurnLog()
        self.facts = FactStore()
        self.started_at: int | None = None
        self.last_score: SensitivityScore | None = None
        self.updated_at = time.time()
        self._consumer: asyncio.Task | None = None
        self._preface_tasks: set[asyncio.Task] = set()
        self._emit_tasks: set[asyncio.Task] = set()
        self._pending_echo: deque[str] = deque(maxlen=16)
        self._closed = False

    @property
    def state(self) -> ConnectionState:
        return self.machine.state

    @property
    def knobs(self) -> PersonaKnobs:
        context = self.machine.context
        if context is not None:
            return context.knobs
        return derive_knobs({})

    @property
    def closed(self) -> bool:
        return self._closed

    def _on_state(self, previous: ConnectionState, current: ConnectionState, message: str) -> None:
        self.updated_at = time.time()
        self._spawn(self._emit({"type": "state", "state": current.value, "message": message}), self._emit_tasks)

    def _spawn(self, coro: Awaitable[Any], bucket: set[asyncio.Task]) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = asyncio.ensure_future(coro)
        bucket.add(task)
        task.add_done_callback(bucket.discard)

    async def _emit(self, message: dict[str, Any]) -> None:
        try:
            await self._output(message)
        except Exception as exc:
            logger.warning("session output failed | session_id=%s err=%s", self.session_id, exc)

    async def start(self) -> bool:
        if self._closed:
            return False
        started = await self.machine.start()
        if not started:
            return False
        if self.started_at is None:
            self.started_at = now_ms()
        if self.coach is not None:
            self.coach.register(self.session_id, self._deliver_tip)
        self._consumer = asyncio.create_task(self._consume(self.machine.events))
        context = self.machine.context
        await self._emit(
            {
                "type": "session",
                "session_id": self.session_id,
                "persona": context.persona_snapshot if context else {},
                "knobs": self.knobs.to_dict(),
            }
        )
        return True

    async def _consume(self, queue: asyncio.Queue) -> None:
        while True:
            raw = await queue.get()
            if raw is None:
                break
            try:
                await self.handle_event(raw)
            except Exception:
                logger.exception("event handling failed | session_id=%s", self.session_id)

    async def handle_event(self, raw: Any) -> Turn | None:
        event = decode_event(raw)
        self.updated_at = time.time()
        if isinstance(event, AudioOutput):
            pipeline = self.machine.pipeline
            if pipeline is not None:
                pipeline.enqueue_persona_audio(event.data)
            return None
        if isinstance(event, Unknown):
            logger.debug("unhandled event | session_id=%s type=%s", self.session_id, event.type)
            return None
        if isinstance(event, UserText):
            if self._consume_echo(event.text):
                return None
            return await self._on_interviewer_utterance(event.text, emotions=event.emotions, send_literal=False)
        if isinstance(event, AssistantText):
            turn = self.turn_log.append_event(event)
            if turn is not None:
                await self._emit({"type": "turn", "turn": turn.to_wire()})
            return turn
        return None

    def _consume_echo(self, text: str) -> bool:
        clean = str(text or "").strip()
        if clean in self._pending_echo:
            self._pending_echo.remove(clean)
            return True
        return False

    async def submit_text(self, text: str) -> Turn | None:
        """Typed interviewer input: score, send the preface after the hesitation, then the text."""
        clean = str(text or "").strip()
        if not clean or self._closed or not self.machine.is_ready():
            return None
        self._pending_echo.append(clean)
        return await self._on_interviewer_utterance(clean, send_literal=True)

    async def _on_interviewer_utterance(
        self,
        text: str,
        emotions: tuple[Emotion, ...] | list[Emotion] = (),
        send_literal: bool = False,
    ) -> Turn | None:
        knobs = self.knobs
        score = score_utterance(text, knobs, self.turn_log.interviewer_count)
        guidance, matched = build_fact_guidance(text, self.facts)
        preface = build_guidance_preface(score, guidance)
        computed_at = time.monotonic()
        self.last_score = score

        turn = self.turn_log.append(ROLE_INTERVIEWER, text, emotions=emotions)
        if turn is None:
            return None
        self.facts.upsert_from(text)
        log_event(
            "sensitivity",
            "scored",
            self.session_id,
            level=score.level,
            risk=score.risk,
            hesitation_ms=score.hesitation_ms,
            fact_topics=matched,
        )
        self._spawn(self._send_preface(preface, text if send_literal else None, computed_at, score.hesitation_ms), self._preface_tasks)
        await self._emit({"type": "turn", "turn": turn.to_wire(), "sensitivity": score.to_dict()})

        if self.coach is not None:
            self.coach.on_interviewer_turn(self.session_id, self._coach_request(text))
        return turn

    async def _send_preface(self, preface: str, literal: str | None, computed_at: float, hesitation_ms: int) -> None:
        remaining = hesitation_ms / 1000.0 - (time.monotonic() - computed_at)
        if remaining > 0:
            await self._sleep(remaining)
        if self._closed:
            return
        await self.machine.send_user_input(preface)
        if literal:
            await self.machine.send_user_input(literal)

    def _coach_request(self, text: str) -> CoachRequest:
        context = self.machine.context
        brief = ""
        if context is not None:
            snapshot = context.persona_snapshot
            knobs = context.knobs
            brief = (
                f"{snapshot.get('name') or 'Participant'}, age {knobs.age}, "
                f"{knobs.personality} personality, {knobs.tech_familiarity} tech familiarity"
            )
        return CoachRequest(
            current_utterance=text,
            recent_turns=[turn.to_wire() for turn in self.turn_log.recent(8)],
            persona_brief=brief,
            recent_emotions=[item.to_dict() for item in self.turn_log.recent_emotions()],
        )

    async def _deliver_tip(self, tip: CoachTip) -> None:
        if self._closed:
            return
        await self._emit({"type": "coach_tip", "tip": tip.to_dict()})

    async def feed_microphone(self, data: bytes) -> int:
        pipeline = self.machine.pipeline
        if pipeline is None or self._closed:
            return 0
        return await pipeline.feed_microphone(data)

    def levels(self) -> dict[str, float]:
        pipeline = self.machine.pipeline
        if pipeline is None:
            return {"mic": 0.0, "persona": 0.0}
        return {"mic": round(pipeline.mic_level, 3), "persona": round(pipeline.persona_level, 3)}

    def halt_media(self) -> None:
        self._closed = True
        if self.coach is not None:
            self.coach.cancel_session(self.session_id)
        for task in list(self._preface_tasks):
            task.cancel()
        self.machine.halt_media()

    async def close_transport(self) -> None:
        await self.machine.stop()

    def report_turns(self) -> list[Turn]:
        return self.turn_log.turns

    def report_meta(self) -> dict[str, Any]:
        context = self.machine.context
        meta: dict[str, Any] = {}
        if self.started_at is not None:
            meta["startedAt"] = self.started_at
        if context is not None:
            meta["personaSnapshot"] = context.persona_snapshot
        return meta

    async def stop(self, meta: dict[str, Any] | None = None) -> FinalizeResult:
        result = await self.finalizer.stop(self.session_id, live=self, meta=meta)
        consumer = self._consumer
        if consumer is not None and consumer is not asyncio.current_task() and not consumer.done():
            try:
                await asyncio.wait_for(consumer, timeout=1.0)
            except asyncio.TimeoutError:
                logger.warning("event consumer did not drain | session_id=%s", self.session_id)
        await self._emit({"type": "stopped", "result": result.to_dict()})
        return result
