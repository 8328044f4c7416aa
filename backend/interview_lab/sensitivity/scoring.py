from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

from interview_lab.persona.knobs import PersonaKnobs


GUIDANCE_PREFIX = "[[guidance]]"

LEVEL_HIGH = "high"
LEVEL_MEDIUM = "medium"
LEVEL_LOW = "low"

_HESITATION_BASE_MS = {LEVEL_LOW: 200, LEVEL_MEDIUM: 500, LEVEL_HIGH: 900}
_MAX_SENTENCES = {LEVEL_LOW: 4, LEVEL_MEDIUM: 3, LEVEL_HIGH: 2}

# boundary qualifiers are not treated as topic keywords on their own
_BOUNDARY_QUALIFIERS = {"exact", "name", "full", "home", "specific", "personal", "my", "your"}

_SPECIFIC_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    ("school", re.compile(r"school|university|college")),
    ("company", re.compile(r"company|employer|work(?:\s+at)?")),
    ("address", re.compile(r"address|street|st\.?\s|road|rd\.?\s|avenue|ave\.?\s")),
    ("email", re.compile(r"email|@")),
    ("phone", re.compile(r"phone|\b\d{3}[-\s]?\d{3}[-\s]?\d{4}\b")),
    ("specific", re.compile(r"which|what|when|where|who")),
)
_DIGITS = re.compile(r"\d")
_WHY = re.compile(r"(^|[^a-z])why([^a-z]|$)")


@dataclass(frozen=True)
class SensitivityScore:
    level: str
    hesitation_ms: int
    max_sentences: int
    disclose_probability: float
    matched_keys: tuple[str, ...] = field(default_factory=tuple)
    risk: float = 0.0
    boundary_hit: bool = False
    trust_factor: float = 0.0

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "hesitation_ms": self.hesitation_ms,
            "max_sentences": self.max_sentences,
            "disclose_probability": self.disclose_probability,
            "matched_keys": list(self.matched_keys),
            "risk": self.risk,
            "boundary_hit": self.boundary_hit,
            "trust_factor": self.trust_factor,
        }


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def boundary_keywords(boundary: str) -> list[str]:
    phrase = str(boundary or "").strip().lower()
    if not phrase:
        return []
    tokens = [
        token
        for token in re.findall(r"[a-z]+", phrase)
        if token not in _BOUNDARY_QUALIFIERS and len(token) >= 3
    ]
    return [phrase, *tokens]


def detect_boundary_hit(text: str, boundaries: tuple[str, ...] | list[str]) -> bool:
    lowered = str(text or "").lower()
    for boundary in boundaries:
        if any(keyword in lowered for keyword in boundary_keywords(boundary)):
            return True
    return False


def detect_specifics(text: str) -> list[str]:
    raw = str(text or "")
    lowered = raw.lower()
    keys = [name for name, pattern in _SPECIFIC_PATTERNS if pattern.search(lowered)]
    if _DIGITS.search(raw):
        keys.append("digits")
    return keys


def level_for_risk(risk: float) -> str:
    if risk >= 2.5:
        return LEVEL_HIGH
    if risk >= 1.2:
        return LEVEL_MEDIUM
    return LEVEL_LOW


def score_utterance(text: str, knobs: PersonaKnobs, turns_seen: int) -> SensitivityScore:
    lowered = str(text or "").lower()
    boundary_hit = detect_boundary_hit(lowered, knobs.boundaries)
    specifics = detect_specifics(text)

    risk = 0.0
    if boundary_hit:
        risk += 2.0
    risk += 0.5 * len(specifics)
    if _WHY.search(lowered):
        risk += 0.3

    warmup = max(1, int(knobs.trust_warmup_turns or 1))
    trust_factor = clamp01(max(0, int(turns_seen or 0)) / warmup)
    openness = clamp01(knobs.openness)
    cautiousness = clamp01(knobs.cautiousness)

    risk -= 0.8 * trust_factor * openness
    risk += 0.5 * cautiousness
    risk = max(0.0, min(4.0, risk))

    level = level_for_risk(risk)
    hesitation_ms = _round_half_up(_HESITATION_BASE_MS[level] * (0.7 + 0.6 * cautiousness))
    disclose = clamp01(0.8 - 0.15 * risk + 0.15 * openness + 0.15 * trust_factor)

    return SensitivityScore(
        level=level,
        hesitation_ms=hesitation_ms,
        max_sentences=_MAX_SENTENCES[level],
        disclose_probability=round(disclose, 4),
        matched_keys=tuple(specifics),
        risk=round(risk, 4),
        boundary_hit=boundary_hit,
        trust_factor=trust_factor,
    )


def build_stage_directive(score: SensitivityScore) -> str:
    parts = [f"[max_sentences={score.max_sentences}]"]
    if score.level == LEVEL_HIGH:
        parts.append("[if you don't know specifics, say so and ask a clarifying question]")
    parts.append(f"[disclose_prob={score.disclose_probability:.2f}]")
    return " ".join(parts)


def build_guidance_preface(score: SensitivityScore, guidance: str = "") -> str:
    clean = str(guidance or "").strip()
    stage = build_stage_directive(score)
    body = f"{clean} {stage}" if clean else stage
    return f"{GUIDANCE_PREFIX} {body}"


def is_guidance_preface(text: str) -> bool:
    return str(text or "").strip().startswith(GUIDANCE_PREFIX)
