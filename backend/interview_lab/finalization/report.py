from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Iterable

from interview_lab.core.config import REPORT_CACHE_MAX
from interview_lab.ingestion.models import Turn
from interview_lab.ingestion.normalizer import now_ms


def _as_ms(value: Any) -> int | None:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


def _wire_turn(item: Any) -> dict[str, Any] | None:
    if isinstance(item, Turn):
        return item.to_wire()
    if not isinstance(item, dict):
        return None
    text = str(item.get("text") or "").strip()
    if not text:
        return None
    payload: dict[str, Any] = {
        "role": str(item.get("role") or "interviewer"),
        "text": text,
        "at": _as_ms(item.get("at", item.get("timestamp"))) or 0,
    }
    if isinstance(item.get("emotions"), list) and item["emotions"]:
        payload["emotions"] = list(item["emotions"])
    return payload


@dataclass
class SessionReport:
    session_id: str
    started_at: int
    stopped_at: int
    persona_snapshot: dict[str, Any] = field(default_factory=dict)
    turns: list[dict[str, Any]] = field(default_factory=list)
    extra_meta: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> int:
        return max(0, int(self.stopped_at) - int(self.started_at))

    def to_dict(self) -> dict[str, Any]:
        meta = dict(self.extra_meta)
        meta.update(
            {
                "id": self.session_id,
                "startedAt": self.started_at,
                "stoppedAt": self.stopped_at,
                "durationMs": self.duration_ms,
                "personaSnapshot": dict(self.persona_snapshot),
            }
        )
        return {"meta": meta, "turns": [dict(turn) for turn in self.turns]}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SessionReport":
        meta = dict(payload.get("meta") or {}) if isinstance(payload, dict) else {}
        turns = payload.get("turns") if isinstance(payload, dict) else None
        stopped_at = _as_ms(meta.pop("stoppedAt", None)) or 0
        started_at = _as_ms(meta.pop("startedAt", None))
        meta.pop("durationMs", None)
        snapshot = meta.pop("personaSnapshot", None)
        session_id = str(meta.pop("id", "") or "")
        return cls(
            session_id=session_id,
            started_at=started_at if started_at is not None else stopped_at,
            stopped_at=stopped_at,
            persona_snapshot=dict(snapshot) if isinstance(snapshot, dict) else {},
            turns=[wire for wire in (_wire_turn(item) for item in turns or []) if wire],
            extra_meta=meta,
        )


def build_report(
    session_id: str,
    turns: Iterable[Any],
    meta: dict[str, Any] | None = None,
    persona_snapshot: dict[str, Any] | None = None,
    now: int | None = None,
) -> SessionReport:
    """Merges caller meta with the session id from the path; stoppedAt defaults to now."""
    merged = dict(meta or {})
    wire_turns = [wire for wire in (_wire_turn(item) for item in turns or []) if wire]

    stopped_at = _as_ms(merged.pop("stoppedAt", None))
    if stopped_at is None:
        stopped_at = int(now if now is not None else now_ms())
    started_at = _as_ms(merged.pop("startedAt", None))
    if started_at is None:
        started_at = wire_turns[0]["at"] if wire_turns and wire_turns[0]["at"] else stopped_at

    snapshot = merged.pop("personaSnapshot", None)
    if persona_snapshot:
        snapshot = persona_snapshot
    merged.pop("id", None)
    merged.pop("durationMs", None)

    return SessionReport(
        session_id=str(session_id),
        started_at=started_at,
        stopped_at=stopped_at,
        persona_snapshot=dict(snapshot) if isinstance(snapshot, dict) else {},
        turns=wire_turns,
        extra_meta=merged,
    )


class ReportCache:
    """Bounded LRU of report snapshots keyed by session id."""

    def __init__(self, max_entries: int = REPORT_CACHE_MAX):
        self.max_entries = max(1, int(max_entries))
        self._lock = Lock()
        self._items: OrderedDict[str, SessionReport] = OrderedDict()

    def get(self, session_id: str) -> SessionReport | None:
        key = str(session_id or "")
        with self._lock:
            report = self._items.get(key)
            if report is not None:
                self._items.move_to_end(key)
            return report

    def put(self, report: SessionReport) -> None:
        with self._lock:
            self._items[report.session_id] = report
            self._items.move_to_end(report.session_id)
            while len(self._items) > self.max_entries:
                self._items.popitem(last=False)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
