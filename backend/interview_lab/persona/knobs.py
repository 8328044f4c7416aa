from __future__ import annotations

import math
import os
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from interview_lab.core.config import HUME_CONFIG_ID


DEFAULT_AGE = 35
DEFAULT_OPENNESS = 0.5
DEFAULT_CAUTIOUSNESS = 0.6
DEFAULT_TRUST_WARMUP_TURNS = 4
DEFAULT_BOUNDARIES = (
    "income",
    "finances",
    "religion",
    "medical",
    "exact address",
    "school name",
    "company name",
)

_WARM_WORDS = ("warm", "friendly", "open")
_RESERVED_WORDS = ("reserved", "quiet", "guarded", "impatient", "angry")
_LIST_SPLIT = re.compile(r"[;,\n]+")


@dataclass(frozen=True)
class TurnTaking:
    max_seconds: int = 8
    interrupt_on_voice: bool = True


@dataclass(frozen=True)
class PersonaKnobs:
    age: int
    traits: tuple[str, ...]
    tech_familiarity: str
    personality: str
    voice_profile_id: str
    speech_rate: float
    turn_taking: TurnTaking = field(default_factory=TurnTaking)
    openness: float = DEFAULT_OPENNESS
    cautiousness: float = DEFAULT_CAUTIOUSNESS
    boundaries: tuple[str, ...] = DEFAULT_BOUNDARIES
    trust_warmup_turns: int = DEFAULT_TRUST_WARMUP_TURNS
    age_bucket: str = "adult"
    gender: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["traits"] = list(self.traits)
        payload["boundaries"] = list(self.boundaries)
        return payload


def _clamp(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    return max(minimum, min(maximum, value))


def _as_text(value: Any, fields: tuple[str, ...] = ()) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return " ".join(str(item) for item in value)
    if isinstance(value, dict):
        for name in fields:
            candidate = value.get(name)
            if isinstance(candidate, str):
                return candidate
    return ""


def to_string_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        return [part.strip() for part in _LIST_SPLIT.split(value) if part.strip()]
    return []


def normalize_personality(value: Any) -> str:
    text = _as_text(value, ("personality", "style", "tone", "mood", "summary")).lower()
    if any(word in text for word in _WARM_WORDS):
        return "warm"
    if any(word in text for word in _RESERVED_WORDS):
        return "reserved"
    return "neutral"


def normalize_tech_level(value: Any) -> str:
    text = str(value or "").lower()
    if "low" in text or "novice" in text or "beginner" in text:
        return "low"
    if "high" in text or "advanced" in text or "expert" in text:
        return "high"
    return "medium"


def normalize_gender(persona: dict[str, Any]) -> str | None:
    raw = persona.get("gender")
    if not (isinstance(raw, str) and raw.strip()):
        demographics = persona.get("demographics")
        raw = demographics.get("gender") if isinstance(demographics, dict) else None
    if not isinstance(raw, str) or not raw.strip():
        return None
    normalized = raw.strip().lower()
    if normalized.startswith("f"):
        return "female"
    if normalized.startswith("m"):
        return "male"
    return None


def resolve_age(value: Any) -> int:
    try:
        age = float(value)
    except (TypeError, ValueError):
        return DEFAULT_AGE
    if not math.isfinite(age):
        return DEFAULT_AGE
    return int(round(age))


def age_bucket(age: int) -> str:
    if age <= 24:
        return "youth"
    if age >= 60:
        return "senior"
    return "adult"


def load_voice_table(environ: dict[str, str] | None = None) -> dict[str, str]:
    """Collects HUME_CFG_<GENDER>_<BUCKET>[_<PERSONALITY>] entries from the environment."""
    source = os.environ if environ is None else environ
    table: dict[str, str] = {}
    for key, value in source.items():
        if not key.startswith("HUME_CFG_"):
            continue
        clean = str(value or "").strip()
        if clean:
            table[key[len("HUME_CFG_"):].lower()] = clean
    return table


def choose_voice_profile(
    bucket: str,
    personality: str,
    gender: str | None,
    voice_table: dict[str, str],
    default: str | None = None,
) -> str:
    genders = [gender] if gender else ["female", "male"]
    for candidate in genders:
        for key in (f"{candidate}_{bucket}_{personality}", f"{candidate}_{bucket}"):
            value = voice_table.get(key)
            if value:
                return value
    return default or HUME_CONFIG_ID or "default"


def _collect_traits(persona: dict[str, Any]) -> tuple[str, ...]:
    ordered: list[str] = []
    occupation = persona.get("occupation")
    if isinstance(occupation, str) and occupation.strip():
        ordered.append(occupation.strip())
    for name in ("traits", "goals", "frustrations", "painpoints"):
        ordered.extend(to_string_list(persona.get(name)))
    notes = persona.get("notes")
    if isinstance(notes, str) and notes.strip():
        ordered.append(notes.strip())
    return tuple(dict.fromkeys(ordered))


def _unit_override(persona: dict[str, Any], name: str, default: float) -> float:
    value = persona.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if not math.isfinite(float(value)):
        return default
    return _clamp(float(value))


def _boundaries_override(persona: dict[str, Any]) -> tuple[str, ...]:
    items = [item.lower() for item in to_string_list(persona.get("boundaries"))]
    return tuple(items) if items else DEFAULT_BOUNDARIES


def _warmup_override(persona: dict[str, Any]) -> int:
    value = persona.get("trust_warmup_turns", persona.get("trustWarmupTurns"))
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_TRUST_WARMUP_TURNS
    if not math.isfinite(float(value)):
        return DEFAULT_TRUST_WARMUP_TURNS
    return max(1, int(value))


def derive_knobs(persona: dict[str, Any] | None, voice_table: dict[str, str] | None = None) -> PersonaKnobs:
    record = persona if isinstance(persona, dict) else {}
    table = load_voice_table() if voice_table is None else voice_table

    age = resolve_age(record.get("age"))
    bucket = age_bucket(age)
    personality = normalize_personality(record.get("personality"))
    gender = normalize_gender(record)
    tech = normalize_tech_level(record.get("techfamiliarity", record.get("tech_familiarity", record.get("techFamiliarity"))))

    return PersonaKnobs(
        age=age,
        traits=_collect_traits(record),
        tech_familiarity=tech,
        personality=personality,
        voice_profile_id=choose_voice_profile(bucket, personality, gender, table),
        speech_rate=0.9 if bucket == "senior" else 1.0,
        turn_taking=TurnTaking(),
        openness=_unit_override(record, "openness", DEFAULT_OPENNESS),
        cautiousness=_unit_override(record, "cautiousness", DEFAULT_CAUTIOUSNESS),
        boundaries=_boundaries_override(record),
        trust_warmup_turns=_warmup_override(record),
        age_bucket=bucket,
        gender=gender,
    )
