from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable

from interview_lab.ingestion.models import ROLE_INTERVIEWER, ROLE_PERSONA, Turn
from interview_lab.ingestion.normalizer import normalize_role


OPEN_PREFIX = re.compile(r"^(how|what|why|describe|tell me|walk me|could you explain)\b", re.IGNORECASE)
CLOSED_PREFIX = re.compile(r"^(is|are|do|does|did|can|will|have|has|was|were)\b", re.IGNORECASE)
RAPPORT_RE = re.compile(r"(\bhi\b|\bhello\b|\bhey\b|how are you|good (morning|afternoon)|thanks|thank you|appreciate)", re.IGNORECASE)
FACT_CHECK_RE = re.compile(r"(just to confirm|to clarify|so you'?re saying|did i get (this|that) right)", re.IGNORECASE)
FOLLOW_UP_CUES = re.compile(r"\b(why|how|example|tell me more|more about|could you (expand|elaborate)|specifically)\b", re.IGNORECASE)
SWEARING_RE = re.compile(r"(\bfuck\b|\bshit\b|\basshole\b|\bbitch\b|\bidiot\b|\bstupid\b|\bdumb\b)", re.IGNORECASE)
HOSTILITY_RE = re.compile(r"(\bshut up\b|\byou (are|re) (wrong|dumb|stupid)|\bthat'?s dumb\b|\bi (hate|despise) you\b|\byou suck\b)", re.IGNORECASE)
DOUBLE_BARREL_RE = re.compile(r"(\?\s*and\s+|\?.+\?)", re.IGNORECASE)
FILLER_WORDS = {"um", "uh", "erm", "er", "ah", "eh", "hmm", "like"}

SHORT_ANSWER_WORDS = 12
INTERRUPTION_GAP_MS = 2000
MISSED_OPPORTUNITY_CAP = 5


@dataclass(frozen=True)
class TurnView:
    role: str
    text: str
    at: int


def coerce_turns(turns: Iterable[Any]) -> list[TurnView]:
    views: list[TurnView] = []
    for item in turns or []:
        if isinstance(item, Turn):
            role, text, at = item.role, item.text, item.timestamp
        elif isinstance(item, dict):
            role = item.get("role") or item.get("speaker")
            text = item.get("text")
            at = item.get("at", item.get("timestamp"))
        else:
            continue
        clean = str(text or "").strip()
        if not clean:
            continue
        try:
            stamp = int(float(at))
        except (TypeError, ValueError):
            stamp = 0
        views.append(TurnView(role=normalize_role(role), text=clean, at=stamp))
    return views


def word_count(text: str) -> int:
    return len(str(text or "").split())


def is_question(text: str) -> bool:
    return str(text or "").strip().endswith("?")


def classify_question(text: str) -> str | None:
    """'open', 'closed', or None when the utterance is not a question."""
    clean = str(text or "").strip()
    if not is_question(clean):
        return None
    if OPEN_PREFIX.match(clean):
        return "open"
    return "closed"


def talk_time_ratio(turns: Iterable[Any]) -> dict[str, float]:
    views = coerce_turns(turns)
    interviewer = sum(len(view.text) for view in views if view.role == ROLE_INTERVIEWER)
    persona = sum(len(view.text) for view in views if view.role == ROLE_PERSONA)
    total = interviewer + persona
    if total <= 0:
        return {"interviewer_pct": 0, "persona_pct": 0, "interviewer_chars": 0, "persona_chars": 0}
    interviewer_pct = int(round(interviewer / total * 100))
    return {
        "interviewer_pct": interviewer_pct,
        "persona_pct": 100 - interviewer_pct,
        "interviewer_chars": interviewer,
        "persona_chars": persona,
    }


def question_counts(turns: Iterable[Any]) -> dict[str, int]:
    counts = {"open": 0, "closed": 0, "rapport": 0, "fact_check": 0}
    for view in coerce_turns(turns):
        if view.role != ROLE_INTERVIEWER:
            continue
        kind = classify_question(view.text)
        if kind:
            counts[kind] += 1
        if RAPPORT_RE.search(view.text):
            counts["rapport"] += 1
        if FACT_CHECK_RE.search(view.text):
            counts["fact_check"] += 1
    return counts


def _is_open_follow_up(text: str) -> bool:
    return classify_question(text) == "open" or bool(FOLLOW_UP_CUES.search(text))


def missed_opportunities(turns: Iterable[Any], limit: int = MISSED_OPPORTUNITY_CAP) -> list[dict[str, Any]]:
    views = coerce_turns(turns)
    misses: list[dict[str, Any]] = []
    for index in range(len(views) - 2):
        question, answer, following = views[index], views[index + 1], views[index + 2]
        if question.role != ROLE_INTERVIEWER or classify_question(question.text) != "open":
            continue
        if answer.role != ROLE_PERSONA or word_count(answer.text) >= SHORT_ANSWER_WORDS:
            continue
        if following.role != ROLE_INTERVIEWER or _is_open_follow_up(following.text):
            continue
        misses.append({"question": question.text, "answer": answer.text, "at": answer.at})
        if len(misses) >= max(0, int(limit)):
            break
    return misses


def session_span_ms(turns: Iterable[Any]) -> int:
    stamps = [view.at for view in coerce_turns(turns) if view.at > 0]
    if not stamps:
        return 0
    return max(0, max(stamps) - min(stamps))


def interruption_count(turns: Iterable[Any], gap_ms: int = INTERRUPTION_GAP_MS) -> int:
    views = coerce_turns(turns)
    count = 0
    for previous, current in zip(views, views[1:]):
        if previous.role != ROLE_PERSONA or current.role != ROLE_INTERVIEWER:
            continue
        gap = current.at - previous.at
        if 0 <= gap < gap_ms:
            count += 1
    return count


def interruption_rate(turns: Iterable[Any], duration_ms: int | None = None) -> float:
    views = coerce_turns(turns)
    span = int(duration_ms) if duration_ms and duration_ms > 0 else session_span_ms(views)
    minutes = span / 60000.0
    if minutes <= 0:
        return 0.0
    return round(interruption_count(views) / minutes, 3)


def follow_up_chain_depth(turns: Iterable[Any]) -> int:
    """Longest run of open question -> persona answer -> open question links."""
    views = coerce_turns(turns)
    longest = 0
    current = 0
    last_open_index: int | None = None
    for index, view in enumerate(views):
        if view.role != ROLE_INTERVIEWER:
            continue
        is_open = classify_question(view.text) == "open"
        linked = (
            is_open
            and last_open_index is not None
            and index >= 2
            and last_open_index == index - 2
            and views[index - 1].role == ROLE_PERSONA
        )
        if linked:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
        last_open_index = index if is_open else None
    return longest


def tone_flags(turns: Iterable[Any]) -> dict[str, bool]:
    interviewer = [view.text for view in coerce_turns(turns) if view.role == ROLE_INTERVIEWER]
    return {
        "swearing": any(SWEARING_RE.search(text) for text in interviewer),
        "hostility": any(HOSTILITY_RE.search(text) for text in interviewer),
        "double_barrel": any(DOUBLE_BARREL_RE.search(text) for text in interviewer),
    }


def filler_counts(turns: Iterable[Any]) -> dict[str, int]:
    counts = {ROLE_INTERVIEWER: 0, ROLE_PERSONA: 0}
    for view in coerce_turns(turns):
        for token in view.text.split():
            if re.sub(r"^[^a-z]+|[^a-z]+$", "", token.lower()) in FILLER_WORDS:
                counts[view.role] += 1
    return counts


def suggest_rewrites(turns: Iterable[Any], limit: int = 2) -> list[dict[str, str]]:
    out: list[dict[str, str]] = []
    for view in coerce_turns(turns):
        if view.role != ROLE_INTERVIEWER or not CLOSED_PREFIX.match(view.text):
            continue
        body = CLOSED_PREFIX.sub("", view.text, count=1)
        body = re.sub(r"^\s*[:,-]?\s*", "", body)
        body = re.sub(r"\?+$", "", body).strip()
        if not body:
            continue
        lowered = view.text.lower()
        usage = re.match(r"^do you (use|have)\b\s*", lowered)
        if usage:
            verb = "use" if usage.group(1) == "use" else "approach"
            rest = re.sub(r"\?+$", "", view.text[usage.end():]).strip() or "it"
            rewrite = f"How do you {verb} {rest}?"
        elif lowered.startswith("is "):
            rewrite = f"What makes {body} difficult for you?"
        elif re.match(r"^(are|can|will|have|has|was|were|did|does)\b", lowered):
            rewrite = f"How do you handle {body}?"
        else:
            rewrite = f"How would you describe {body}?"
        out.append({"original": view.text, "rewrite": rewrite})
        if len(out) >= max(0, int(limit)):
            break
    return out


def interview_score(turns: Iterable[Any], duration_ms: int | None = None) -> dict[str, Any]:
    views = coerce_turns(turns)
    ratio = talk_time_ratio(views)
    questions = question_counts(views)
    asked = questions["open"] + questions["closed"]

    open_ratio = questions["open"] / asked if asked else 0.0
    back_to_back_closed = sum(
        1
        for previous, current in zip(views, views[1:])
        if previous.role == current.role == ROLE_INTERVIEWER
        and classify_question(previous.text) == "closed"
        and classify_question(current.text) == "closed"
    )
    variety = max(0.0, open_ratio - min(0.3, back_to_back_closed * 0.05))
    depth = min(1.0, follow_up_chain_depth(views) / 3.0)
    balance = 1.0 - min(50, abs(50 - ratio["interviewer_pct"])) / 50.0 if views else 0.0
    flags = tone_flags(views)
    civility = 0.2 if (flags["swearing"] or flags["hostility"]) else 1.0
    rate = interruption_rate(views, duration_ms)
    interruptions = 1.0 if rate <= 0.2 else 0.0 if rate >= 1.0 else 1.0 - (rate - 0.2) / 0.8
    misses = len(missed_opportunities(views, limit=1000))
    follow_through = max(0.0, 1.0 - 0.25 * misses)

    components = {
        "balance": round(balance, 4),
        "variety": round(variety, 4),
        "depth": round(depth, 4),
        "civility": round(civility, 4),
        "interruptions": round(interruptions, 4),
        "follow_through": round(follow_through, 4),
    }
    weights = {"balance": 0.2, "variety": 0.2, "depth": 0.2, "civility": 0.15, "interruptions": 0.15, "follow_through": 0.1}
    total = sum(components[key] * weight for key, weight in weights.items()) * 100
    return {
        "total": max(0, min(100, int(round(total)))),
        "components": components,
        "weights": weights,
    }


def build_session_analytics(report: Any) -> dict[str, Any]:
    payload = report.to_dict() if hasattr(report, "to_dict") else dict(report or {})
    meta = payload.get("meta") if isinstance(payload.get("meta"), dict) else {}
    turns = coerce_turns(payload.get("turns") or [])
    try:
        duration_ms = max(0, int(float(meta.get("durationMs") or 0)))
    except (TypeError, ValueError):
        duration_ms = 0
    if duration_ms <= 0:
        duration_ms = session_span_ms(turns)

    ratio = talk_time_ratio(turns)
    return {
        "session_id": str(meta.get("id") or ""),
        "duration_ms": duration_ms,
        "turn_count": len(turns),
        "talk_time": ratio,
        "questions": question_counts(turns),
        "missed_opportunities": missed_opportunities(turns),
        "interruptions": interruption_count(turns),
        "interruption_rate": interruption_rate(turns, duration_ms),
        "follow_up_depth": follow_up_chain_depth(turns),
        "tone": tone_flags(turns),
        "fillers": filler_counts(turns),
        "rewrites": suggest_rewrites(turns),
        "score": interview_score(turns, duration_ms),
    }
