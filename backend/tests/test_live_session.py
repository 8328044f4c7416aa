import asyncio

import pytest

from conftest import FakeAdvisor, FakeReportStore, FakeSink, FakeTransport
from interview_lab.coaching import CoachingCueEngine, CoachTip
from interview_lab.core.state import ConnectionState
from interview_lab.finalization import SessionFinalizer
from interview_lab.ingestion import WebhookLedger
from interview_lab.live.session import LiveSession


ADDRESS_QUESTION = "What is your home address and which school do you attend?"


class Harness:
    def __init__(self, credentials, coach=None, sleep=None):
        self.transports = []
        self.outputs = []
        self.slept = []
        self.store = FakeReportStore()
        self.finalizer = SessionFinalizer(self.store, ledger=WebhookLedger())

        async def record_sleep(seconds):
            self.slept.append(seconds)
            await asyncio.sleep(0)

        async def output(message):
            self.outputs.append(message)

        self.live = LiveSession(
            "s1",
            credentials,
            self._factory,
            FakeSink(),
            self.finalizer,
            coach=coach,
            output=output,
            sleep=sleep or record_sleep,
        )

    def _factory(self):
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def transport(self) -> FakeTransport:
        return self.transports[-1]

    def of_type(self, kind):
        return [message for message in self.outputs if message.get("type") == kind]


async def _until(predicate, timeout=1.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.mark.asyncio
async def test_typed_question_sends_preface_after_hesitation_then_text(credentials):
    harness = Harness(credentials)
    assert await harness.live.start() is True

    turn = await harness.live.submit_text(ADDRESS_QUESTION)
    await _until(lambda: len(harness.transport.user_inputs()) == 2)

    preface, literal = harness.transport.user_inputs()
    assert preface.startswith("[[guidance]]")
    assert "[max_sentences=2]" in preface
    assert literal == ADDRESS_QUESTION
    assert 0.9 < harness.slept[0] <= 0.954
    assert turn.text == ADDRESS_QUESTION
    assert [item.text for item in harness.live.turn_log.turns] == [ADDRESS_QUESTION]
    assert harness.of_type("turn")[0]["sensitivity"]["level"] == "high"
    await harness.live.stop()


@pytest.mark.asyncio
async def test_submit_text_is_ignored_before_connected(credentials):
    harness = Harness(credentials)

    assert await harness.live.submit_text("How do you plan shifts?") is None
    assert len(harness.live.turn_log) == 0


@pytest.mark.asyncio
async def test_transport_echo_and_guidance_are_not_logged_twice(credentials):
    harness = Harness(credentials)
    await harness.live.start()
    await harness.live.submit_text("How do you plan shifts?")
    await _until(lambda: len(harness.transport.user_inputs()) == 2)

    harness.transport.push({"type": "user_message", "message": {"content": harness.transport.user_inputs()[0]}})
    harness.transport.push({"type": "user_message", "message": {"content": "How do you plan shifts?"}})
    harness.transport.push({"type": "assistant_message", "message": {"content": "Mostly on paper."}})
    await _until(lambda: len(harness.live.turn_log) == 2)

    assert [(item.role, item.text) for item in harness.live.turn_log.turns] == [
        ("interviewer", "How do you plan shifts?"),
        ("persona", "Mostly on paper."),
    ]
    assert len(harness.transport.user_inputs()) == 2
    await harness.live.stop()


@pytest.mark.asyncio
async def test_spoken_question_gets_preface_only(credentials):
    harness = Harness(credentials)
    await harness.live.start()

    harness.transport.push({"type": "user_message", "message": {"content": "Which school did you attend?"}})
    await _until(lambda: len(harness.transport.user_inputs()) == 1)

    assert harness.transport.user_inputs()[0].startswith("[[guidance]]")
    assert len(harness.live.turn_log) == 1
    await harness.live.stop()


@pytest.mark.asyncio
async def test_stated_fact_is_restated_in_later_preface(credentials):
    harness = Harness(credentials)
    await harness.live.start()

    await harness.live.submit_text("My school is Lincoln High.")
    await harness.live.submit_text("Which school did you attend again?")
    await _until(lambda: len(harness.transport.user_inputs()) == 4)

    prefaces = [text for text in harness.transport.user_inputs() if text.startswith("[[guidance]]")]
    assert any("(Previously you said your school was: Lincoln High.)" in text for text in prefaces)
    assert harness.live.facts.get("school") == "Lincoln High"
    await harness.live.stop()


@pytest.mark.asyncio
async def test_persona_audio_is_routed_to_playback(credentials):
    harness = Harness(credentials)
    await harness.live.start()

    harness.transport.push(b"\x01\x02\x03\x04")
    await _until(lambda: harness.live.machine.pipeline.playback.play_completions == 1)
    await harness.live.stop()


@pytest.mark.asyncio
async def test_levels_report_microphone_activity(credentials):
    harness = Harness(credentials)
    assert harness.live.levels() == {"mic": 0.0, "persona": 0.0}
    await harness.live.start()

    await harness.live.feed_microphone((20000).to_bytes(2, "little", signed=True) * 100)

    assert harness.live.levels()["mic"] == pytest.approx(0.61, abs=0.01)
    await harness.live.stop()


@pytest.mark.asyncio
async def test_coach_tip_reaches_output(credentials):
    tip = CoachTip(label="affirm_good_move", message="Nice open question.", severity="info", source="advisor")
    coach = CoachingCueEngine(advisor=FakeAdvisor(tip=tip), debounce_ms=0, cooldown_ms=0)
    harness = Harness(credentials, coach=coach)
    await harness.live.start()

    await harness.live.submit_text("How do you plan shifts?")
    await coach.drain("s1")

    assert harness.of_type("coach_tip") == [{"type": "coach_tip", "tip": tip.to_dict()}]
    await harness.live.stop()
    assert coach.is_active("s1") is False


@pytest.mark.asyncio
async def test_stop_drops_pending_preface_and_persists_report(credentials):
    never = asyncio.Event()

    async def blocked_sleep(_seconds):
        await never.wait()

    harness = Harness(credentials, sleep=blocked_sleep)
    await harness.live.start()
    await harness.live.submit_text("How do you plan shifts?")

    result = await harness.live.stop(meta={"mode": "voice"})

    assert result.ok is True
    assert harness.transport.user_inputs() == []
    assert harness.live.state == ConnectionState.IDLE
    assert harness.live.machine.pipeline.torn_down is True
    assert harness.store.reports["s1"]["meta"]["mode"] == "voice"
    assert harness.store.reports["s1"]["meta"]["personaSnapshot"]["name"] == "Dana"
    assert [turn["text"] for turn in harness.store.reports["s1"]["turns"]] == ["How do you plan shifts?"]
    assert harness.of_type("stopped")[-1]["result"]["ok"] is True
