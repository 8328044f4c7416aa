from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import Awaitable, Callable, Protocol

import numpy as np

from interview_lab.core.config import (
    AUDIO_CHUNK_MS,
    AUDIO_SAMPLE_RATE,
    HALF_DUPLEX_HOLD_MS,
    HALF_DUPLEX_THRESHOLD,
)
from interview_lab.system_metrics import increment_metric

logger = logging.getLogger("interview_lab.live.audio")


class AudioSink(Protocol):
    async def play(self, chunk: bytes) -> None:
        """Resolves once the chunk has finished playing."""
        ...

    async def pause(self) -> None:
        ...

    async def resume(self) -> None:
        ...


def pcm16_rms(data: bytes) -> float:
    usable = len(data or b"") - (len(data or b"") % 2)
    if usable <= 0:
        return 0.0
    samples = np.frombuffer(bytes(data[:usable]), dtype="<i2").astype(np.float32) / 32768.0
    if samples.size == 0:
        return 0.0
    return float(min(1.0, np.sqrt(np.mean(np.square(samples)))))


class LevelMeter:
    def __init__(self, name: str):
        self.name = name
        self.level = 0.0

    def update(self, data: bytes) -> float:
        self.level = pcm16_rms(data)
        return self.level

    def reset(self) -> None:
        self.level = 0.0


class AudioCapture:
    """Cuts microphone PCM into fixed-duration chunks and forwards them while the transport is ready."""

    def __init__(
        self,
        forward: Callable[[bytes], Awaitable[None]],
        is_ready: Callable[[], bool],
        sample_rate: int = AUDIO_SAMPLE_RATE,
        chunk_ms: int = AUDIO_CHUNK_MS,
        meter: LevelMeter | None = None,
        on_level: Callable[[float], None] | None = None,
    ):
        self._forward = forward
        self._is_ready = is_ready
        self.chunk_bytes = max(2, int(sample_rate * 2 * chunk_ms / 1000))
        self.meter = meter or LevelMeter("microphone")
        self._on_level = on_level
        self._buffer = bytearray()
        self.active = False
        self.forwarded = 0
        self.dropped = 0

    def open(self) -> None:
        self._buffer.clear()
        self.active = True

    def close(self) -> None:
        self.active = False
        self._buffer.clear()
        self.meter.reset()

    async def feed(self, data: bytes) -> int:
        if not data:
            return 0
        if not self.active:
            self.dropped += 1
            increment_metric("audio_chunks_dropped")
            return 0

        level = self.meter.update(data)
        if self._on_level is not None:
            self._on_level(level)

        self._buffer.extend(data)
        sent = 0
        while len(self._buffer) >= self.chunk_bytes:
            chunk = bytes(self._buffer[: self.chunk_bytes])
            del self._buffer[: self.chunk_bytes]
            if not self.active or not self._is_ready():
                self.dropped += 1
                increment_metric("audio_chunks_dropped")
                continue
            await self._forward(chunk)
            self.forwarded += 1
            sent += 1
            increment_metric("audio_chunks_forwarded")
        return sent


def decode_audio_chunk(chunk: bytes | bytearray | str) -> bytes | None:
    if isinstance(chunk, (bytes, bytearray)):
        return bytes(chunk) or None
    if isinstance(chunk, str) and chunk:
        try:
            return base64.b64decode(chunk, validate=False) or None
        except (binascii.Error, ValueError):
            return None
    return None


class PlaybackQueue:
    """FIFO of persona audio with a single playback slot."""

    def __init__(self, sink: AudioSink, meter: LevelMeter | None = None):
        self._sink = sink
        self.meter = meter or LevelMeter("persona")
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._gate = asyncio.Event()
        self._gate.set()
        self._task: asyncio.Task | None = None
        self.closed = False
        self.playing = False
        self.play_starts = 0
        self.play_completions = 0

    @property
    def paused(self) -> bool:
        return not self._gate.is_set()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._task is None and not self.closed:
            self._task = asyncio.create_task(self._run())

    def enqueue(self, chunk: bytes | bytearray | str) -> bool:
        if self.closed:
            return False
        data = decode_audio_chunk(chunk)
        if data is None:
            return False
        self._queue.put_nowait(data)
        self.start()
        return True

    async def pause(self) -> None:
        if self.paused:
            return
        self._gate.clear()
        if self.playing:
            await self._sink.pause()

    async def resume(self) -> None:
        if not self.paused or self.closed:
            return
        self._gate.set()
        if self.playing:
            await self._sink.resume()

    async def _run(self) -> None:
        while not self.closed:
            chunk = await self._queue.get()
            if chunk is None or self.closed:
                break
            await self._gate.wait()
            if self.closed:
                break
            self.playing = True
            self.play_starts += 1
            self.meter.update(chunk)
            try:
                await self._sink.play(chunk)
                self.play_completions += 1
                increment_metric("playback_chunks_played")
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("playback chunk failed | err=%s", exc)
            finally:
                self.playing = False
                self.meter.reset()

    def clear(self) -> None:
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.clear()
        self._gate.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class HalfDuplexGate:
    """Pauses persona playback while the interviewer is speaking."""

    def __init__(
        self,
        playback: PlaybackQueue,
        threshold: float = HALF_DUPLEX_THRESHOLD,
        hold_ms: int = HALF_DUPLEX_HOLD_MS,
    ):
        self._playback = playback
        self.threshold = float(threshold)
        self.hold_ms = max(0, int(hold_ms))
        self._resume_task: asyncio.Task | None = None
        self._pause_task: asyncio.Task | None = None

    def on_level(self, level: float) -> None:
        if level > self.threshold:
            self._cancel_resume()
            if not self._playback.paused:
                self._pause_task = asyncio.create_task(self._playback.pause())
            return
        if self._playback.paused and self._resume_task is None:
            self._resume_task = asyncio.create_task(self._resume_after_hold())

    async def _resume_after_hold(self) -> None:
        try:
            await asyncio.sleep(self.hold_ms / 1000.0)
            await self._playback.resume()
        finally:
            if self._resume_task is asyncio.current_task():
                self._resume_task = None

    def _cancel_resume(self) -> None:
        if self._resume_task is not None and not self._resume_task.done():
            self._resume_task.cancel()
        self._resume_task = None

    def close(self) -> None:
        self._cancel_resume()
        if self._pause_task is not None and not self._pause_task.done():
            self._pause_task.cancel()
        self._pause_task = None


class AudioPipeline:
    def __init__(
        self,
        forward: Callable[[bytes], Awaitable[None]],
        is_ready: Callable[[], bool],
        sink: AudioSink,
        sample_rate: int = AUDIO_SAMPLE_RATE,
        chunk_ms: int = AUDIO_CHUNK_MS,
        threshold: float = HALF_DUPLEX_THRESHOLD,
        hold_ms: int = HALF_DUPLEX_HOLD_MS,
    ):
        self.playback = PlaybackQueue(sink)
        self.gate = HalfDuplexGate(self.playback, threshold=threshold, hold_ms=hold_ms)
        self.capture = AudioCapture(
            forward,
            is_ready,
            sample_rate=sample_rate,
            chunk_ms=chunk_ms,
            on_level=self.gate.on_level,
        )
        self.torn_down = False

    @property
    def mic_level(self) -> float:
        return self.capture.meter.level

    @property
    def persona_level(self) -> float:
        return self.playback.meter.level

    def open_capture(self) -> None:
        if self.torn_down:
            return
        self.capture.open()

    def start_playback(self) -> None:
        if not self.torn_down:
            self.playback.start()

    async def feed_microphone(self, data: bytes) -> int:
        return await self.capture.feed(data)

    def enqueue_persona_audio(self, chunk: bytes | bytearray | str) -> bool:
        if self.torn_down:
            return False
        return self.playback.enqueue(chunk)

    def teardown(self) -> None:
        if self.torn_down:
            return
        self.torn_down = True
        self.capture.close()
        self.gate.close()
        self.playback.close()
        logger.info("audio pipeline torn down | dropped=%s forwarded=%s", self.capture.dropped, self.capture.forwarded)
