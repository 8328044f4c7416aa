from __future__ import annotations

import logging
import math
from typing import Any

from interview_lab.ingestion.models import Emotion

logger = logging.getLogger("interview_lab.ingestion.emotions")

_NAME_KEYS = ("name", "label", "key", "id")
_SCORE_KEYS = ("score", "value", "confidence", "probability")
_NESTED_KEYS = ("scores", "emotions", "affect", "predictions", "output")
_NESTED_PATHS = (
    ("models", "prosody"),
    ("message", "models", "prosody"),
    ("message", "metadata", "emotions"),
)
_ROOT_FALLBACK_KEYS = ("models", "message", "data")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _normalize_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(score):
        return 0.0
    if 1.0 < score <= 100.0:
        score = score / 100.0
    return max(0.0, min(1.0, score))


def _first_present(record: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        if record.get(key) is not None:
            return record.get(key)
    return None


def _dig(record: Any, path: tuple[str, ...]) -> Any:
    current = record
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


class _Collector:
    def __init__(self):
        self.found: list[tuple[str, float]] = []

    def push(self, name: Any, score: Any) -> None:
        label = str(name if name is not None else "").strip()
        if not label:
            return
        value = _normalize_score(score)
        if value > 0:
            self.found.append((label, value))

    def collect(self, value: Any, depth: int = 0) -> None:
        if not value or depth > 8:
            return
        if isinstance(value, (list, tuple)):
            for item in value:
                if isinstance(item, dict):
                    name = _first_present(item, _NAME_KEYS)
                    score = _first_present(item, _SCORE_KEYS)
                    if name is not None and score is not None:
                        self.push(name, score)
                elif isinstance(item, (list, tuple)) and len(item) >= 2:
                    self.push(item[0], item[1])
            return
        if isinstance(value, dict):
            numeric = sum(1 for item in value.values() if _is_number(item))
            if numeric >= min(3, len(value)):
                for key, item in value.items():
                    self.push(key, item)
                return
            for key in _NESTED_KEYS:
                self.collect(value.get(key), depth + 1)
            for path in _NESTED_PATHS:
                self.collect(_dig(value, path), depth + 1)


def extract_emotions(payload: Any, limit: int = 3) -> list[Emotion]:
    """Top emotion scores from any of the prosody payload shapes the voice engine emits."""
    try:
        collector = _Collector()
        collector.collect(payload)
        if not collector.found and isinstance(payload, dict):
            for key in _ROOT_FALLBACK_KEYS:
                collector.collect(payload.get(key), 1)

        best: dict[str, float] = {}
        for name, score in collector.found:
            best[name] = max(best.get(name, 0.0), score)
        ranked = sorted(best.items(), key=lambda item: item[1], reverse=True)
        return [Emotion(name=name, score=round(score, 4)) for name, score in ranked[: max(0, limit)]]
    except Exception as exc:
        logger.warning("extract_emotions failed | err=%s", exc)
        return []
