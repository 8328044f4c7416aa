import asyncio
import os
import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ["OPENAI_API_KEY"] = ""
os.environ.setdefault("REPORT_STORE", "local")
os.environ.setdefault("HUME_WEBHOOK_SECRET", "test-webhook-secret")

from interview_lab.finalization.report import SessionReport  # noqa: E402
from interview_lab.live.credentials import AccessToken, CredentialService, LocalSessionContextSource  # noqa: E402
from interview_lab.live.errors import TransportError  # noqa: E402


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("REPORT_STORE", "local")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("SUPABASE_URL", "")


class FakeTransport:
    """In-memory voice transport; tests push inbound frames and read what was sent."""

    def __init__(self, fail_open: bool = False):
        self.fail_open = fail_open
        self.opened_with = None
        self.sent_json = []
        self.sent_audio = []
        self.closed = False
        self._open = False
        self._inbound: asyncio.Queue = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self._open and not self.closed

    async def open(self, access_token, config_id=None):
        if self.fail_open:
            raise TransportError("connection refused")
        self.opened_with = (access_token, config_id)
        self._open = True

    async def send_json(self, payload):
        if not self.is_open:
            raise TransportError("not open")
        self.sent_json.append(payload)

    async def send_audio(self, chunk):
        if not self.is_open:
            raise TransportError("not open")
        self.sent_audio.append(chunk)

    def push(self, frame) -> None:
        self._inbound.put_nowait(frame)

    def remote_close(self) -> None:
        self._inbound.put_nowait(None)

    async def events(self):
        while True:
            frame = await self._inbound.get()
            if frame is None:
                self._open = False
                return
            yield frame

    async def close(self):
        self.closed = True
        self._open = False
        self._inbound.put_nowait(None)

    def user_inputs(self) -> list[str]:
        return [item["text"] for item in self.sent_json if item.get("type") == "user_input"]


class FakeSink:
    def __init__(self, play_delay: float = 0.0):
        self.play_delay = play_delay
        self.events = []
        self.active = 0
        self.max_active = 0

    async def play(self, chunk):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.events.append(("start", chunk))
        try:
            if self.play_delay:
                await asyncio.sleep(self.play_delay)
        finally:
            self.active -= 1
        self.events.append(("end", chunk))

    async def pause(self):
        self.events.append(("pause", None))

    async def resume(self):
        self.events.append(("resume", None))

    @property
    def starts(self) -> int:
        return sum(1 for kind, _ in self.events if kind == "start")


class FakeTokenClient:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = 0

    async def fetch(self) -> AccessToken:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return AccessToken(access_token=f"token-{self.calls}")


class FakeReportStore:
    def __init__(self, fail_times: int = 0, delay: float = 0.0):
        self.fail_times = fail_times
        self.delay = delay
        self.saves = 0
        self.reports: dict[str, dict] = {}

    async def save(self, report: SessionReport) -> None:
        self.saves += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.saves <= self.fail_times:
            raise OSError("store unavailable")
        self.reports[report.session_id] = report.to_dict()

    async def load(self, session_id: str):
        payload = self.reports.get(session_id)
        return SessionReport.from_dict(payload) if payload else None


class FakeAdvisor:
    def __init__(self, tip=None, error: Exception | None = None):
        self.tip = tip
        self.error = error
        self.requests = []

    async def advise(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.tip


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def persona() -> dict:
    return {
        "name": "Dana",
        "age": 34,
        "gender": "female",
        "occupation": "Nurse",
        "techfamiliarity": "medium",
        "personality": "friendly",
    }


@pytest.fixture
def context_source(persona) -> LocalSessionContextSource:
    source = LocalSessionContextSource()
    source.register("s1", persona, {"title": "Shift scheduling", "description": "Hospital rota app"})
    return source


@pytest.fixture
def credentials(context_source) -> CredentialService:
    return CredentialService(context_source, token_client=FakeTokenClient())
