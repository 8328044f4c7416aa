import asyncio

import pytest

from conftest import FakeReportStore, no_sleep
from interview_lab.finalization import LocalReportStore, ReportCache, SessionFinalizer, SessionReport, build_report
from interview_lab.ingestion import LocalWebhookStore, Turn, WebhookLedger


TURNS = [
    {"role": "interviewer", "text": "How do you plan shifts?", "at": 1_000},
    {"role": "persona", "text": "Mostly on paper.", "at": 4_000},
]


class FakeLive:
    def __init__(self, session_id="s1", close_delay=0.0):
        self.session_id = session_id
        self.close_delay = close_delay
        self.halted = 0
        self.transport_closed = False

    def halt_media(self):
        self.halted += 1

    async def close_transport(self):
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        self.transport_closed = True

    def report_turns(self):
        return [Turn(role="interviewer", text="What does a bad week look like?", timestamp=2_000)]

    def report_meta(self):
        return {"startedAt": 1_500, "personaSnapshot": {"name": "Dana"}}


def _finalizer(store, **kwargs):
    kwargs.setdefault("ledger", WebhookLedger())
    kwargs.setdefault("sleep", no_sleep)
    return SessionFinalizer(store, **kwargs)


def test_build_report_merges_meta_and_computes_duration():
    report = build_report(
        "s1",
        TURNS,
        {"startedAt": 1_000, "stoppedAt": 61_000, "id": "other", "durationMs": 5, "mode": "voice"},
    )
    payload = report.to_dict()

    assert payload["meta"]["id"] == "s1"
    assert payload["meta"]["durationMs"] == 60_000
    assert payload["meta"]["mode"] == "voice"
    assert [turn["text"] for turn in payload["turns"]] == ["How do you plan shifts?", "Mostly on paper."]


def test_build_report_defaults_times():
    report = build_report("s1", TURNS, now=9_000)

    assert report.stopped_at == 9_000
    assert report.started_at == 1_000
    assert build_report("s2", [], now=9_000).duration_ms == 0
    assert build_report("s3", [], {"startedAt": 10_000, "stoppedAt": 5_000}).duration_ms == 0


def test_report_round_trips_through_dict():
    report = build_report("s1", TURNS, {"stoppedAt": 8_000, "personaSnapshot": {"name": "Dana"}})
    restored = SessionReport.from_dict(report.to_dict())

    assert restored == report


def test_report_cache_evicts_least_recently_used():
    cache = ReportCache(max_entries=2)
    for sid in ("a", "b"):
        cache.put(build_report(sid, [], now=1))
    cache.get("a")
    cache.put(build_report("c", [], now=1))

    assert "a" in cache
    assert "b" not in cache
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_concurrent_stops_persist_once():
    store = FakeReportStore(delay=0.05)
    finalizer = _finalizer(store)

    results = await asyncio.gather(*(finalizer.stop("s1", turns=TURNS, meta={"stoppedAt": 9_000}) for _ in range(3)))

    assert store.saves == 1
    assert all(result.ok for result in results)
    assert len({id(result.report) for result in results}) == 1


@pytest.mark.asyncio
async def test_repeated_stop_after_success_returns_first_result():
    store = FakeReportStore()
    finalizer = _finalizer(store)

    first = await finalizer.stop("s1", turns=TURNS)
    second = await finalizer.stop("s1", turns=[])

    assert second is first
    assert store.saves == 1


@pytest.mark.asyncio
async def test_persist_failure_is_bounded_and_keeps_snapshot():
    store = FakeReportStore(fail_times=10)
    finalizer = _finalizer(store, attempts=3)

    result = await finalizer.stop("s1", turns=TURNS)

    assert result.ok is False
    assert result.retryable is True
    assert result.attempts == 3
    assert store.saves == 3
    assert "store unavailable" in result.error
    assert (await finalizer.get_report("s1")).turns == result.report.turns
    assert result.to_dict()["report"]["meta"]["id"] == "s1"


@pytest.mark.asyncio
async def test_retry_persists_cached_snapshot():
    store = FakeReportStore(fail_times=3)
    finalizer = _finalizer(store, attempts=3)
    await finalizer.stop("s1", turns=TURNS)

    result = await finalizer.retry("s1")

    assert result.ok is True
    assert result.attempts == 1
    assert "s1" in store.reports
    assert (await finalizer.retry("unknown")).attempts == 0


@pytest.mark.asyncio
async def test_slow_store_times_out():
    store = FakeReportStore(delay=0.3)
    finalizer = _finalizer(store, attempts=1, timeout_sec=0.05)

    result = await finalizer.stop("s1", turns=TURNS)

    assert result.ok is False
    assert "timed out" in result.error


@pytest.mark.asyncio
async def test_stop_with_live_session_halts_media_first_and_bounds_transport_close():
    store = FakeReportStore()
    live = FakeLive(close_delay=0.5)
    finalizer = _finalizer(store, transport_close_timeout_sec=0.05)

    result = await finalizer.stop("s1", live=live, meta={"stoppedAt": 3_500})

    assert live.halted == 1
    assert live.transport_closed is False
    assert result.ok is True
    assert result.report.started_at == 1_500
    assert result.report.duration_ms == 2_000
    assert result.report.persona_snapshot == {"name": "Dana"}
    assert [turn["text"] for turn in result.report.turns] == ["What does a bad week look like?"]


@pytest.mark.asyncio
async def test_get_report_prefers_cache_then_store():
    store = FakeReportStore()
    await store.save(build_report("s1", TURNS, now=9_000))
    finalizer = _finalizer(store)

    loaded = await finalizer.get_report("s1")

    assert loaded.stopped_at == 9_000
    assert finalizer.cache.get("s1") is loaded
    assert await finalizer.get_report("missing") is None
    assert await finalizer.get_report("") is None


@pytest.mark.asyncio
async def test_get_report_reconstructs_from_webhook_turns():
    ledger = WebhookLedger()
    for index, (role, text) in enumerate((("user", "How do you plan shifts?"), ("assistant", "On paper."))):
        ledger.apply(
            {
                "type": "transcript",
                "id": f"evt-{index}",
                "session_id": "s9",
                "role": role,
                "text": text,
                "timestamp": 1_700_000_000_000 + index * 5_000,
            }
        )
    finalizer = _finalizer(FakeReportStore(), ledger=ledger)

    report = await finalizer.get_report("s9")

    assert report.extra_meta["reconstructed"] is True
    assert report.duration_ms == 5_000
    assert [turn["role"] for turn in report.turns] == ["interviewer", "persona"]


@pytest.mark.asyncio
async def test_get_report_reads_stored_webhook_turns_after_restart(tmp_path):
    path = tmp_path / "webhooks.json"
    ledger = WebhookLedger(store=LocalWebhookStore(path))
    for index, (role, text) in enumerate((("user", "How do you plan shifts?"), ("assistant", "On paper."))):
        await ledger.ingest(
            {
                "type": "transcript",
                "id": f"evt-{index}",
                "session_id": "s7",
                "role": role,
                "text": text,
                "timestamp": 1_700_000_000_000 + index * 5_000,
            }
        )
    finalizer = _finalizer(FakeReportStore(), ledger=WebhookLedger(store=LocalWebhookStore(path)))

    report = await finalizer.get_report("s7")

    assert report.extra_meta["reconstructed"] is True
    assert [turn["text"] for turn in report.turns] == ["How do you plan shifts?", "On paper."]
    assert report.duration_ms == 5_000


@pytest.mark.asyncio
async def test_stop_without_turns_uses_webhook_turns():
    ledger = WebhookLedger()
    ledger.apply({"type": "transcript", "id": "evt-1", "session_id": "s1", "text": "Tell me about nights."})
    finalizer = _finalizer(FakeReportStore(), ledger=ledger)

    result = await finalizer.stop("s1")

    assert [turn["text"] for turn in result.report.turns] == ["Tell me about nights."]


@pytest.mark.asyncio
async def test_local_report_store_survives_reload(tmp_path):
    path = tmp_path / "reports.json"
    report = build_report("s1", TURNS, {"stoppedAt": 8_000})

    await LocalReportStore(path).save(report)
    loaded = await LocalReportStore(path).load("s1")

    assert loaded == report
    assert await LocalReportStore(path).load("nope") is None
    assert not path.with_suffix(".tmp").exists()
