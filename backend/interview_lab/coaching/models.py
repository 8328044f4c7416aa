from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

LABELS = (
    "rapport_to_specifics",
    "open_over_closed",
    "follow_up_opportunity",
    "clarify_gently",
    "deescalate_emotion",
    "boundaries",
    "sensitive_rationale",
    "affirm_good_move",
)
SEVERITIES = ("info", "nudge", "important")
SOURCE_ADVISOR = "advisor"
SOURCE_HEURISTIC = "heuristic"


@dataclass(frozen=True)
class CoachTip:
    label: str
    message: str
    severity: str = "nudge"
    suggestion: str | None = None
    source: str = SOURCE_HEURISTIC

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "label": self.label,
            "message": self.message,
            "severity": self.severity,
            "source": self.source,
        }
        if self.suggestion:
            out["suggestion"] = self.suggestion
        return out


@dataclass
class CoachRequest:
    """What the advisory service sees for one settled interviewer utterance."""

    current_utterance: str
    recent_turns: list[dict[str, Any]] = field(default_factory=list)
    persona_brief: str = ""
    recent_emotions: list[dict[str, Any]] = field(default_factory=list)

    @property
    def last_persona_reply(self) -> str:
        for turn in reversed(self.recent_turns):
            if str(turn.get("role") or "") == "persona":
                return str(turn.get("text") or "")
        return ""
