from __future__ import annotations

import asyncio
import hmac
import json
import logging
import math
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any

from interview_lab.core.config import WEBHOOK_SEEN_LIMIT
from interview_lab.core.logger import log_event
from interview_lab.ingestion.emotions import extract_emotions
from interview_lab.ingestion.models import Turn, WebhookEvent, WebhookOutcome
from interview_lab.ingestion.normalizer import (
    TurnLog,
    extract_event_id,
    extract_role,
    extract_text,
    normalize_role,
    now_ms,
)
from interview_lab.ingestion.store import WebhookStore
from interview_lab.system_metrics import increment_metric

logger = logging.getLogger("interview_lab.ingestion.webhook")

SIGNAL_PAYLOAD_LIMIT = 2048

KIND_TRANSCRIPT = "transcript"
KIND_EMOTION = "emotion"
KIND_ENDED = "ended"
KIND_OTHER = "other"

PERSISTED_STATUSES = {"turn_recorded", "signal_recorded", "ended"}


def authenticate_webhook(signature: str | None, secret: str | None) -> bool:
    expected = str(secret or "")
    provided = str(signature or "")
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def classify_webhook_type(event_type: str) -> str:
    lowered = str(event_type or "").lower()
    if "transcript" in lowered or "message" in lowered:
        return KIND_TRANSCRIPT
    if "emotion" in lowered or "signal" in lowered:
        return KIND_EMOTION
    if "end" in lowered:
        return KIND_ENDED
    return KIND_OTHER


def _to_epoch_ms(value: Any) -> int:
    if isinstance(value, bool):
        return now_ms()
    if isinstance(value, (int, float)):
        number = float(value)
        if not math.isfinite(number):
            return now_ms()
        # seconds vs milliseconds
        return int(number * 1000) if number < 1e11 else int(number)
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        try:
            return _to_epoch_ms(float(raw))
        except (ValueError, OverflowError):
            pass
        try:
            return int(datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp() * 1000)
        except (ValueError, OverflowError, OSError):
            return now_ms()
    return now_ms()


def parse_webhook_event(payload: dict[str, Any]) -> WebhookEvent:
    event_type = str(payload.get("type") or payload.get("event") or "").strip().lower()
    metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
    session_id = metadata.get("sessionId") or payload.get("sessionId") or payload.get("session_id")
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}

    return WebhookEvent(
        kind=classify_webhook_type(event_type),
        type=event_type or "unknown",
        session_id=str(session_id).strip() if session_id else None,
        event_id=extract_event_id(payload),
        role=normalize_role(extract_role(payload)),
        text=extract_text(payload),
        timestamp=_to_epoch_ms(payload.get("timestamp") or data.get("timestamp")),
        emotions=tuple(extract_emotions(payload)),
    )


def truncate_payload(payload: Any, limit: int = SIGNAL_PAYLOAD_LIMIT) -> Any:
    try:
        raw = json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return {}
    if len(raw) <= limit:
        return payload
    return {"truncated": True, "raw": raw[:limit]}


@dataclass
class WebhookSessionRecord:
    seen_limit: int
    turns: TurnLog = field(default_factory=TurnLog)
    signals: list[Any] = field(default_factory=list)
    ended_at: int | None = None
    updated_at: float = field(default_factory=time.time)
    hydrated: bool = False
    io_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _seen_order: deque = field(default_factory=deque)
    _seen: set = field(default_factory=set)

    def has_seen(self, event_id: str) -> bool:
        return event_id in self._seen

    def mark_seen(self, event_id: str) -> None:
        self._seen_order.append(event_id)
        self._seen.add(event_id)
        while len(self._seen_order) > self.seen_limit:
            self._seen.discard(self._seen_order.popleft())

    def restore(self, stored: dict[str, Any]) -> None:
        """Stored state goes first; anything recorded in memory meanwhile is kept unless the store already saw it."""
        stored_seen = [str(item) for item in stored.get("seen_event_ids") or [] if item]
        known = set(stored_seen)

        log = TurnLog()
        for item in stored.get("turns") or []:
            turn = Turn.from_wire(item)
            if turn is not None:
                log.append(turn.role, turn.text, turn.timestamp, turn.emotions, turn.event_id)
        for turn in self.turns.turns:
            if turn.event_id and turn.event_id in known:
                continue
            log.append(turn.role, turn.text, turn.timestamp, turn.emotions, turn.event_id)
        self.turns = log

        pending = [item for item in self._seen_order if item not in known]
        self._seen_order = deque()
        self._seen = set()
        for event_id in stored_seen + pending:
            self.mark_seen(event_id)

        signals = stored.get("signals")
        self.signals = (list(signals) if isinstance(signals, list) else []) + self.signals
        if self.ended_at is None and isinstance(stored.get("ended_at"), int):
            self.ended_at = stored["ended_at"]

    def snapshot(self) -> dict[str, Any]:
        turns = []
        for turn in self.turns.turns:
            wire = turn.to_wire()
            if turn.event_id:
                wire["eventId"] = turn.event_id
            turns.append(wire)
        return {
            "turns": turns,
            "seen_event_ids": list(self._seen_order),
            "signals": list(self.signals),
            "ended_at": self.ended_at,
        }


class WebhookLedger:
    """
    Out-of-band event intake: at-most-once turns per event id within a bounded window.
    With a store, a session's state is loaded before its first event is applied and
    written back after every accepted event, so dedup and turns survive restarts.
    """

    def __init__(
        self,
        seen_limit: int = WEBHOOK_SEEN_LIMIT,
        max_sessions: int = 1000,
        store: WebhookStore | None = None,
    ):
        self.seen_limit = max(1, int(seen_limit))
        self.max_sessions = max(1, int(max_sessions))
        self.store = store
        self._lock = Lock()
        self._sessions: OrderedDict[str, WebhookSessionRecord] = OrderedDict()

    def _record(self, session_id: str) -> WebhookSessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            record = WebhookSessionRecord(seen_limit=self.seen_limit)
            self._sessions[session_id] = record
            while len(self._sessions) > self.max_sessions:
                self._sessions.popitem(last=False)
        self._sessions.move_to_end(session_id)
        record.updated_at = time.time()
        return record

    async def ingest(self, payload: Any) -> WebhookOutcome:
        if not isinstance(payload, dict):
            return WebhookOutcome(status="ignored")
        event = parse_webhook_event(payload)
        if self.store is None or not event.session_id:
            return self._apply_event(event, payload)

        with self._lock:
            record = self._record(event.session_id)
        async with record.io_lock:
            hydrated = await self.hydrate(event.session_id)
            outcome = self._apply_event(event, payload)
            if hydrated and outcome.status in PERSISTED_STATUSES:
                await self._save(event.session_id, record)
        return outcome

    async def hydrate(self, session_id: str) -> bool:
        """Loads stored state once per session. False when the store could not be read."""
        sid = str(session_id or "").strip()
        if self.store is None or not sid:
            return True
        with self._lock:
            record = self._record(sid)
            if record.hydrated:
                return True
        try:
            stored = await self.store.load(sid)
        except Exception as exc:
            increment_metric("webhook_store_failures_total")
            logger.warning("webhook state load failed | session_id=%s err=%s", sid, exc)
            return False
        with self._lock:
            if not record.hydrated:
                if isinstance(stored, dict):
                    record.restore(stored)
                record.hydrated = True
        return True

    async def _save(self, session_id: str, record: WebhookSessionRecord) -> None:
        with self._lock:
            state = record.snapshot()
        try:
            await self.store.save(session_id, state)
        except Exception as exc:
            increment_metric("webhook_store_failures_total")
            logger.warning("webhook state save failed | session_id=%s err=%s", session_id, exc)

    def apply(self, payload: Any) -> WebhookOutcome:
        if not isinstance(payload, dict):
            return WebhookOutcome(status="ignored")
        return self._apply_event(parse_webhook_event(payload), payload)

    def _apply_event(self, event: WebhookEvent, payload: dict[str, Any]) -> WebhookOutcome:
        increment_metric("webhook_events_total")
        if not event.session_id:
            log_event("webhook", "missing_session", "", type=event.type)
            return WebhookOutcome(status="ignored")

        if event.kind == KIND_TRANSCRIPT:
            return self._apply_transcript(event)

        with self._lock:
            record = self._record(event.session_id)
            if event.kind == KIND_EMOTION:
                record.signals.append(truncate_payload(payload))
                status = "signal_recorded"
            elif event.kind == KIND_ENDED:
                record.ended_at = now_ms()
                status = "ended"
            else:
                status = "ignored"
        log_event("webhook", status, event.session_id, type=event.type)
        return WebhookOutcome(status=status, session_id=event.session_id)

    def _apply_transcript(self, event: WebhookEvent) -> WebhookOutcome:
        if not event.text:
            return WebhookOutcome(status="ignored", session_id=event.session_id)

        with self._lock:
            record = self._record(event.session_id)
            if event.event_id and record.has_seen(event.event_id):
                duplicate = True
                turn = None
            else:
                duplicate = False
                turn = record.turns.append(
                    event.role,
                    event.text,
                    timestamp=event.timestamp,
                    emotions=event.emotions,
                    event_id=event.event_id,
                )
                if event.event_id:
                    record.mark_seen(event.event_id)

        if duplicate:
            increment_metric("webhook_duplicates_total")
            log_event("webhook", "duplicate", event.session_id, event_id=event.event_id)
            return WebhookOutcome(status="duplicate", session_id=event.session_id)

        status = "turn_recorded" if turn is not None else "ignored"
        log_event("webhook", status, event.session_id, event_id=event.event_id, role=event.role)
        return WebhookOutcome(status=status, session_id=event.session_id, turn=turn)

    def turns(self, session_id: str) -> list[Turn]:
        with self._lock:
            record = self._sessions.get(str(session_id or ""))
            return record.turns.turns if record else []

    def signals(self, session_id: str) -> list[Any]:
        with self._lock:
            record = self._sessions.get(str(session_id or ""))
            return list(record.signals) if record else []

    def ended_at(self, session_id: str) -> int | None:
        with self._lock:
            record = self._sessions.get(str(session_id or ""))
            return record.ended_at if record else None
