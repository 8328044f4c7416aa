from __future__ import annotations

import base64
import binascii
import logging
import time
from threading import Lock
from typing import Any

from interview_lab.ingestion.emotions import extract_emotions
from interview_lab.ingestion.models import (
    ROLE_INTERVIEWER,
    ROLE_PERSONA,
    AssistantText,
    AudioOutput,
    Emotion,
    InboundEvent,
    Turn,
    Unknown,
    UserText,
)
from interview_lab.sensitivity.scoring import is_guidance_preface

logger = logging.getLogger("interview_lab.ingestion.normalizer")

_PERSONA_MARKERS = ("assistant", "agent", "persona")
_TEXT_PATHS = (
    ("message", "content"),
    ("text",),
    ("content",),
    ("data", "text"),
    ("payload", "text"),
    ("message",),
)
_ASSISTANT_TYPES = {"assistant_message", "assistant_text", "agent_message"}
_USER_TYPES = {"user_message", "user_text", "user_transcript"}
_CONVERSATION_TYPES = {"conversation.message", "conversation_message", "transcript", "message"}
_AUDIO_TYPES = {"audio_output", "audio"}


def now_ms() -> int:
    return int(time.time() * 1000)


def normalize_role(raw: Any) -> str:
    text = str(raw or "").strip().lower()
    if any(marker in text for marker in _PERSONA_MARKERS):
        return ROLE_PERSONA
    return ROLE_INTERVIEWER


def _dig(record: Any, path: tuple[str, ...]) -> Any:
    current = record
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def extract_text(payload: Any) -> str:
    if isinstance(payload, str):
        return payload.strip()
    if not isinstance(payload, dict):
        return ""
    for path in _TEXT_PATHS:
        value = _dig(payload, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def extract_role(payload: Any) -> Any:
    for path in (("message", "role"), ("role",), ("speaker",), ("data", "role")):
        value = _dig(payload, path)
        if isinstance(value, str) and value.strip():
            return value
    return None


def extract_event_id(payload: Any) -> str | None:
    for path in (("id",), ("event_id",), ("data", "id")):
        value = _dig(payload, path)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _decode_audio(value: Any) -> bytes | None:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str) and value:
        try:
            return base64.b64decode(value, validate=False)
        except (binascii.Error, ValueError):
            return None
    return None


def decode_event(raw: Any) -> InboundEvent:
    """Maps one raw transport frame onto the known event variants; never raises."""
    try:
        if isinstance(raw, (bytes, bytearray)):
            return AudioOutput(data=bytes(raw))
        if not isinstance(raw, dict):
            return Unknown(type="invalid", raw=raw)

        event_type = str(raw.get("type") or raw.get("event") or "").strip().lower()
        event_id = extract_event_id(raw)

        if event_type in _AUDIO_TYPES:
            data = _decode_audio(raw.get("data"))
            if data:
                return AudioOutput(data=data, event_id=event_id)
            return Unknown(type=event_type, raw=raw)

        text = extract_text(raw)
        emotions = tuple(extract_emotions(raw))

        if event_type in _ASSISTANT_TYPES:
            role = ROLE_PERSONA
        elif event_type in _USER_TYPES:
            role = ROLE_INTERVIEWER
        elif event_type in _CONVERSATION_TYPES:
            role = normalize_role(extract_role(raw))
        else:
            return Unknown(type=event_type or "unknown", raw=raw)

        if not text:
            return Unknown(type=event_type, raw=raw)
        if role == ROLE_PERSONA:
            return AssistantText(text=text, emotions=emotions, event_id=event_id)
        return UserText(text=text, emotions=emotions, event_id=event_id)
    except Exception as exc:
        logger.warning("decode_event failed | err=%s", exc)
        return Unknown(type="invalid", raw=None)


class TurnLog:
    """Append-only turn list for one session, in processing order."""

    def __init__(self):
        self._lock = Lock()
        self._turns: list[Turn] = []

    def append(
        self,
        role: str,
        text: str,
        timestamp: int | None = None,
        emotions: list[Emotion] | tuple[Emotion, ...] | None = None,
        event_id: str | None = None,
    ) -> Turn | None:
        clean = str(text or "").strip()
        if not clean or is_guidance_preface(clean):
            return None
        turn = Turn(
            role=ROLE_PERSONA if role == ROLE_PERSONA else ROLE_INTERVIEWER,
            text=clean,
            timestamp=int(timestamp if timestamp is not None else now_ms()),
            emotions=list(emotions or []),
            event_id=event_id,
        )
        with self._lock:
            self._turns.append(turn)
        return turn

    def append_event(self, event: InboundEvent, timestamp: int | None = None) -> Turn | None:
        if isinstance(event, AssistantText):
            return self.append(ROLE_PERSONA, event.text, timestamp, event.emotions, event.event_id)
        if isinstance(event, UserText):
            return self.append(ROLE_INTERVIEWER, event.text, timestamp, event.emotions, event.event_id)
        return None

    @property
    def turns(self) -> list[Turn]:
        with self._lock:
            return list(self._turns)

    @property
    def interviewer_count(self) -> int:
        with self._lock:
            return sum(1 for turn in self._turns if turn.role == ROLE_INTERVIEWER)

    def recent(self, limit: int = 8) -> list[Turn]:
        with self._lock:
            return list(self._turns[-max(0, int(limit)):]) if limit else []

    def recent_emotions(self, limit: int = 3) -> list[Emotion]:
        with self._lock:
            for turn in reversed(self._turns):
                if turn.emotions:
                    return list(turn.emotions[:limit])
        return []

    def to_wire(self) -> list[dict[str, Any]]:
        return [turn.to_wire() for turn in self.turns]

    def __len__(self) -> int:
        with self._lock:
            return len(self._turns)
