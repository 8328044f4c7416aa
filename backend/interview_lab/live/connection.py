from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from interview_lab.core.logger import log_event
from interview_lab.core.state import ACTIVE_STATES, ConnectionState
from interview_lab.live.audio import AudioPipeline, AudioSink
from interview_lab.live.credentials import CredentialService, SessionContext
from interview_lab.live.errors import ConfigurationError, TransportError
from interview_lab.live.transport import Transport, session_settings_message, user_input_message
from interview_lab.system_metrics import decrement_metric, increment_metric

logger = logging.getLogger("interview_lab.live.connection")

StateListener = Callable[[ConnectionState, ConnectionState, str], None]


class ConnectionStateMachine:
    """
    idle -> fetching_credentials -> connecting -> connected -> idle | error
    connected -> stopping -> idle on explicit stop.
    The reader task is the only producer of `events`.
    """

    def __init__(
        self,
        session_id: str,
        credentials: CredentialService,
        transport_factory: Callable[[], Transport],
        sink: AudioSink,
        acquire_media: Callable[[], Awaitable[None]] | None = None,
        pipeline_factory: Callable[["ConnectionStateMachine"], AudioPipeline] | None = None,
    ):
        self.session_id = str(session_id)
        self.credentials = credentials
        self._transport_factory = transport_factory
        self._sink = sink
        self._acquire_media = acquire_media
        self._pipeline_factory = pipeline_factory or self._default_pipeline
        self.state = ConnectionState.IDLE
        self.message = ""
        self.context: SessionContext | None = None
        self.transport: Transport | None = None
        self.pipeline: AudioPipeline | None = None
        self.events: asyncio.Queue[Any] = asyncio.Queue()
        self.settings_sent = 0
        self._listeners: list[StateListener] = []
        self._reader_task: asyncio.Task | None = None
        self._start_lock = asyncio.Lock()
        self._stop_requested = False

    def _default_pipeline(self, machine: "ConnectionStateMachine") -> AudioPipeline:
        return AudioPipeline(forward=machine.send_audio, is_ready=machine.is_ready, sink=self._sink)

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: ConnectionState, message: str = "") -> None:
        previous = self.state
        self.state = state
        self.message = message
        log_event("connection", "state", self.session_id, previous=previous.value, current=state.value, detail=message)
        for listener in list(self._listeners):
            try:
                listener(previous, state, message)
            except Exception as exc:
                logger.warning("state listener failed | session_id=%s err=%s", self.session_id, exc)

    def is_ready(self) -> bool:
        return (
            self.state == ConnectionState.CONNECTED
            and self.transport is not None
            and bool(self.transport.is_open)
        )

    async def start(self) -> bool:
        async with self._start_lock:
            if self.state in ACTIVE_STATES:
                logger.info("start ignored | session_id=%s state=%s", self.session_id, self.state.value)
                return False
            self._stop_requested = False
            self.settings_sent = 0
            self.events = asyncio.Queue()
            self._set_state(ConnectionState.FETCHING_CREDENTIALS)

        try:
            self.context = await self.credentials.fetch(self.session_id)
        except asyncio.CancelledError:
            self._set_state(ConnectionState.IDLE, "Connection cancelled")
            raise
        except ConfigurationError as exc:
            self._fail(str(exc) or "Failed to fetch credentials")
            return False
        except Exception as exc:
            logger.exception("credential fetch crashed | session_id=%s", self.session_id)
            self._fail(f"Failed to fetch credentials: {exc}")
            return False

        if self._stop_requested:
            self._set_state(ConnectionState.IDLE, "Stopped")
            return False

        self._set_state(ConnectionState.CONNECTING)
        self.transport = None
        self.pipeline = self._pipeline_factory(self)
        try:
            if self._acquire_media is not None:
                await self._acquire_media()
            self.transport = self._transport_factory()
            await self.transport.open(self.context.token.access_token, self.context.voice_config_id)
        except asyncio.CancelledError:
            await self._abort("Connection cancelled")
            raise
        except (TransportError, PermissionError, OSError) as exc:
            await self._release()
            self._fail(str(exc) or "Failed to connect")
            return False
        except Exception as exc:
            logger.exception("connect crashed | session_id=%s", self.session_id)
            await self._release()
            self._fail(f"Failed to connect: {exc}")
            return False

        if self._stop_requested:
            await self._release()
            self._set_state(ConnectionState.IDLE, "Stopped")
            return False

        return await self._on_connected()

    async def _on_connected(self) -> bool:
        self._set_state(ConnectionState.CONNECTED, "Connected. Waiting for your first question.")
        increment_metric("live_sessions_active")
        increment_metric("live_sessions_started")
        try:
            await self._send_settings_once()
            self.pipeline.start_playback()
            self.pipeline.open_capture()
        except asyncio.CancelledError:
            await self._abort("Connection cancelled")
            raise
        except Exception as exc:
            if not isinstance(exc, TransportError):
                logger.exception("session setup crashed | session_id=%s", self.session_id)
            await self._release()
            self._fail(str(exc) or "Failed to configure session")
            return False

        self._reader_task = asyncio.create_task(self._read_events())
        return True

    async def _abort(self, message: str) -> None:
        await self._release()
        self._set_state(ConnectionState.IDLE, message)

    async def _send_settings_once(self) -> None:
        if self.settings_sent or self.transport is None or self.context is None:
            return
        await self.transport.send_json(session_settings_message(self.context.system_prompt))
        self.settings_sent += 1

    async def _read_events(self) -> None:
        transport = self.transport
        failure: Exception | None = None
        try:
            async for event in transport.events():
                await self.events.put(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            failure = exc
            logger.warning("transport reader failed | session_id=%s err=%s", self.session_id, exc)
        finally:
            self.events.put_nowait(None)

        if self.state == ConnectionState.CONNECTED:
            await self._release()
            if failure is not None:
                self._fail(f"Voice transport error: {failure}")
            else:
                self._set_state(ConnectionState.IDLE, "Disconnected")

    async def send_audio(self, chunk: bytes) -> None:
        if not self.is_ready():
            return
        try:
            await self.transport.send_audio(chunk)
        except TransportError as exc:
            logger.warning("audio send failed | session_id=%s err=%s", self.session_id, exc)

    async def send_user_input(self, text: str) -> bool:
        if not self.is_ready():
            return False
        try:
            await self.transport.send_json(user_input_message(text))
            return True
        except TransportError as exc:
            logger.warning("user input send failed | session_id=%s err=%s", self.session_id, exc)
            return False

    def halt_media(self) -> None:
        if self.pipeline is not None:
            self.pipeline.teardown()

    async def stop(self) -> None:
        if self.state in (ConnectionState.FETCHING_CREDENTIALS, ConnectionState.CONNECTING):
            self._stop_requested = True
            self.halt_media()
            return
        if self.state != ConnectionState.CONNECTED:
            return
        self._set_state(ConnectionState.STOPPING)
        await self._release()
        self._set_state(ConnectionState.IDLE, "Stopped.")

    async def _release(self) -> None:
        was_connected = self.state in (ConnectionState.CONNECTED, ConnectionState.STOPPING)
        self.halt_media()

        reader = self._reader_task
        self._reader_task = None
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        transport = self.transport
        if transport is not None:
            try:
                await transport.close()
            except Exception as exc:
                logger.warning("transport close failed | session_id=%s err=%s", self.session_id, exc)
        if was_connected:
            decrement_metric("live_sessions_active")

    def _fail(self, message: str) -> None:
        increment_metric("live_sessions_failed")
        logger.error("live session failed | session_id=%s err=%s", self.session_id, message)
        self._set_state(ConnectionState.ERROR, message)
