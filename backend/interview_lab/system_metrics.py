import threading
import time
from typing import Any


_lock = threading.Lock()
_metrics: dict[str, float] = {
    "live_sessions_active": 0.0,
    "live_sessions_started": 0.0,
    "live_sessions_failed": 0.0,
    "ws_connections_active": 0.0,
    "webhook_events_total": 0.0,
    "webhook_duplicates_total": 0.0,
    "webhook_rejected_total": 0.0,
    "webhook_store_failures_total": 0.0,
    "audio_chunks_forwarded": 0.0,
    "audio_chunks_dropped": 0.0,
    "playback_chunks_played": 0.0,
    "coach_requests_total": 0.0,
    "coach_tips_emitted": 0.0,
    "coach_fallbacks_total": 0.0,
    "coach_suppressed_total": 0.0,
    "finalize_attempts_total": 0.0,
    "finalize_failures_total": 0.0,
    "finalize_success_total": 0.0,
    "advisor_latency_total_ms": 0.0,
    "advisor_latency_samples": 0.0,
}


def increment_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = float(_metrics.get(key, 0.0)) + float(amount)


def decrement_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        next_value = float(_metrics.get(key, 0.0)) - float(amount)
        _metrics[key] = max(0.0, next_value)


def observe_advisor_latency_ms(value_ms: float) -> None:
    latency = max(0.0, float(value_ms or 0.0))
    with _lock:
        _metrics["advisor_latency_total_ms"] = float(_metrics.get("advisor_latency_total_ms", 0.0)) + latency
        _metrics["advisor_latency_samples"] = float(_metrics.get("advisor_latency_samples", 0.0)) + 1.0


def get_metrics_snapshot(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    with _lock:
        data = dict(_metrics)

    latency_samples = max(1.0, float(data.get("advisor_latency_samples") or 0.0))

    payload: dict[str, Any] = {"generated_at": time.time()}
    for key, value in data.items():
        if key.startswith("advisor_latency_"):
            continue
        payload[key] = int(value or 0.0)
    payload["advisor_latency_samples"] = int(data.get("advisor_latency_samples") or 0.0)
    payload["avg_advisor_latency_ms"] = round(float(data.get("advisor_latency_total_ms") or 0.0) / latency_samples, 2)

    if extra:
        payload.update(extra)
    return payload
