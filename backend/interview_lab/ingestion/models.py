from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


ROLE_INTERVIEWER = "interviewer"
ROLE_PERSONA = "persona"


@dataclass(frozen=True)
class Emotion:
    name: str
    score: float

    def to_dict(self) -> dict:
        return {"name": self.name, "score": self.score}


@dataclass
class Turn:
    role: str
    text: str
    timestamp: int
    emotions: list[Emotion] = field(default_factory=list)
    event_id: str | None = None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"role": self.role, "text": self.text, "at": self.timestamp}
        if self.emotions:
            payload["emotions"] = [item.to_dict() for item in self.emotions]
        return payload

    @classmethod
    def from_wire(cls, item: Any) -> "Turn | None":
        if not isinstance(item, dict):
            return None
        text = str(item.get("text") or "").strip()
        if not text:
            return None
        entries = item.get("emotions") if isinstance(item.get("emotions"), list) else []
        emotions: list[Emotion] = []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("name"):
                continue
            try:
                emotions.append(Emotion(name=str(entry["name"]), score=float(entry.get("score") or 0.0)))
            except (TypeError, ValueError):
                continue
        try:
            timestamp = int(float(item.get("at") or 0))
        except (TypeError, ValueError, OverflowError):
            timestamp = 0
        return cls(
            role=ROLE_PERSONA if item.get("role") == ROLE_PERSONA else ROLE_INTERVIEWER,
            text=text,
            timestamp=timestamp,
            emotions=emotions,
            event_id=str(item.get("eventId") or "") or None,
        )


@dataclass(frozen=True)
class AssistantText:
    text: str
    emotions: tuple[Emotion, ...] = ()
    event_id: str | None = None


@dataclass(frozen=True)
class UserText:
    text: str
    emotions: tuple[Emotion, ...] = ()
    event_id: str | None = None


@dataclass(frozen=True)
class AudioOutput:
    data: bytes
    event_id: str | None = None


@dataclass(frozen=True)
class Unknown:
    type: str
    raw: Any = None


InboundEvent = Union[AssistantText, UserText, AudioOutput, Unknown]


@dataclass(frozen=True)
class WebhookEvent:
    kind: str
    type: str
    session_id: str | None
    event_id: str | None
    role: str
    text: str
    timestamp: int
    emotions: tuple[Emotion, ...] = ()


@dataclass(frozen=True)
class WebhookOutcome:
    status: str
    session_id: str | None = None
    turn: Turn | None = None

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"ok": True, "status": self.status}
        if self.session_id:
            payload["session_id"] = self.session_id
        return payload
