from __future__ import annotations

from typing import Any

SUMMARY_MAX_CHARS = 240


def _safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _format_duration(duration_ms: float) -> str:
    total_seconds = max(0, int(round(duration_ms / 1000.0)))
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes:02d}:{seconds:02d}"


def balance_label(interviewer_pct: float, persona_pct: float) -> str:
    if 40 <= interviewer_pct <= 60 and 40 <= persona_pct <= 60:
        return "balanced"
    return "you led" if interviewer_pct > persona_pct else "participant led"


def interruption_label(rate_per_min: float) -> str:
    if rate_per_min <= 0.05:
        return "none"
    if rate_per_min <= 0.6:
        return "occasional"
    return "frequent"


def depth_label(depth: int) -> str:
    if depth >= 3:
        return "meaningful"
    if depth <= 1:
        return "limited"
    return "moderate"


def _weakest_suggestion(interviewer_pct: float, persona_pct: float, balance: str, interruptions: str, depth: str) -> str:
    candidates: list[tuple[float, str]] = []
    if balance == "balanced":
        candidates.append((1.0, ""))
    elif interviewer_pct > persona_pct:
        candidates.append((0.0, "Aim for more open prompts to reduce your talk share."))
    else:
        candidates.append((0.0, "Guide with open prompts so they share more."))

    interruption_scores = {"none": 1.0, "occasional": 0.6, "frequent": 0.2}
    candidates.append((interruption_scores[interruptions], "Pause 1-2s after answers to avoid cut-ins."))

    depth_scores = {"meaningful": 1.0, "moderate": 0.6, "limited": 0.2}
    candidates.append((depth_scores[depth], "Add one follow-up like \"What made that difficult?\""))

    score, text = min(candidates, key=lambda item: item[0])
    if score >= 1.0:
        return ""
    return text


def _clip(text: str, limit: int = SUMMARY_MAX_CHARS) -> str:
    if len(text) <= limit:
        return text
    head = text[: limit - 3]
    if " " in head:
        head = head[: head.rfind(" ")]
    return head.rstrip(" ,;") + "..."


def build_summary_sentence(analytics: dict[str, Any]) -> str:
    """Two short sentences plus a recommendation for the weakest metric."""
    data = analytics or {}
    talk = data.get("talk_time") if isinstance(data.get("talk_time"), dict) else {}
    interviewer_pct = _safe_float(talk.get("interviewer_pct"))
    persona_pct = _safe_float(talk.get("persona_pct"))
    rate = _safe_float(data.get("interruption_rate"))
    depth = int(_safe_float(data.get("follow_up_depth")))

    balance = balance_label(interviewer_pct, persona_pct)
    interruptions = interruption_label(rate)
    depth_band = depth_label(depth)

    parts = [
        f"Duration {_format_duration(_safe_float(data.get('duration_ms')))}; "
        f"talk {balance} ({int(round(interviewer_pct))}% vs {int(round(persona_pct))}%).",
        f"Interruptions {interruptions}; depth {depth_band}.",
    ]
    suggestion = _weakest_suggestion(interviewer_pct, persona_pct, balance, interruptions, depth_band)
    if suggestion:
        parts.append(suggestion)
    return _clip(" ".join(parts))
