import json
import logging

from interview_lab import system_metrics
from interview_lab.core.logger import log_event


def test_log_event_redacts_free_text(caplog):
    caplog.set_level(logging.INFO, logger="interview_lab.events")

    log_event("coach", "tip", "s1", label="boundaries", message="Avoid asking for the address", extra={"text": "secret"})

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["component"] == "coach"
    assert payload["session_id"] == "s1"
    assert payload["label"] == "boundaries"
    assert payload["message"] == {"redacted": True, "length": 28}
    assert payload["extra"]["text"] == {"redacted": True, "length": 6}


def test_metrics_snapshot_counts_and_averages():
    before = system_metrics.get_metrics_snapshot()
    system_metrics.increment_metric("webhook_events_total")
    system_metrics.decrement_metric("never_set_metric", 5)
    system_metrics.observe_advisor_latency_ms(100)

    after = system_metrics.get_metrics_snapshot(extra={"live_sessions_registered": 2})

    assert after["webhook_events_total"] == before["webhook_events_total"] + 1
    assert after["never_set_metric"] == 0
    assert after["advisor_latency_samples"] == before["advisor_latency_samples"] + 1
    assert after["avg_advisor_latency_ms"] > 0
    assert after["live_sessions_registered"] == 2
