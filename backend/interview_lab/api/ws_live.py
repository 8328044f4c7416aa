from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import time

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketState

from interview_lab.api.deps import get_services
from interview_lab.core.logger import log_event
from interview_lab.live.session import LiveSession
from interview_lab.session.registry import SessionAlreadyLive, live_registry
from interview_lab.system_metrics import decrement_metric, increment_metric

logger = logging.getLogger("interview_lab.api.ws_live")

router = APIRouter()

MAX_WS_TEXT_BYTES = max(1024, int(os.getenv("WS_MAX_TEXT_BYTES", "65536")))
PLAYBACK_ACK_GRACE_SEC = max(0.5, float(os.getenv("PLAYBACK_ACK_GRACE_SEC", "2.0")))
PLAYBACK_BYTES_PER_SEC = 48000
LEVELS_INTERVAL_SEC = max(0.05, float(os.getenv("LEVELS_INTERVAL_SEC", "0.1")))


class WebSocketAudioSink:
    """
    Plays persona audio in the browser: one chunk is sent, then the sink waits for the
    client's playback_done ack (or an estimated duration plus grace) before returning.
    """

    def __init__(self, send, grace_sec: float = PLAYBACK_ACK_GRACE_SEC):
        self._send = send
        self.grace_sec = float(grace_sec)
        self._seq = 0
        self._pending: dict[int, asyncio.Future] = {}

    def _ack_timeout(self, chunk: bytes) -> float:
        return min(30.0, len(chunk) / PLAYBACK_BYTES_PER_SEC + self.grace_sec)

    async def play(self, chunk: bytes) -> None:
        self._seq += 1
        seq = self._seq
        done = asyncio.get_running_loop().create_future()
        self._pending[seq] = done
        try:
            await self._send({"type": "audio", "seq": seq, "data": base64.b64encode(chunk).decode("ascii")})
            await asyncio.wait_for(done, timeout=self._ack_timeout(chunk))
        except asyncio.TimeoutError:
            logger.debug("playback ack missing | seq=%s", seq)
        finally:
            self._pending.pop(seq, None)

    def ack(self, seq: int) -> None:
        done = self._pending.get(int(seq))
        if done is not None and not done.done():
            done.set_result(None)

    async def pause(self) -> None:
        await self._send({"type": "playback", "action": "pause"})

    async def resume(self) -> None:
        await self._send({"type": "playback", "action": "resume"})


@router.websocket("/ws/live/{session_id}")
async def live_socket(websocket: WebSocket, session_id: str):
    await websocket.accept()
    services = get_services()
    send_lock = asyncio.Lock()

    async def _safe_send(payload: dict) -> None:
        if websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            encoded = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            logger.warning("ws payload encode failed | session_id=%s err=%s", session_id, exc)
            return
        try:
            async with send_lock:
                await websocket.send_text(encoded)
        except Exception as exc:
            logger.warning("ws send failed | session_id=%s err=%s", session_id, exc)

    microphone = {"status": "granted"}

    async def _acquire_media() -> None:
        if microphone["status"] != "granted":
            raise PermissionError("Microphone permission denied")

    sink = WebSocketAudioSink(_safe_send)
    live = LiveSession(
        session_id,
        services.credentials,
        services.transport_factory,
        sink,
        services.finalizer,
        coach=services.coach,
        output=_safe_send,
        acquire_media=_acquire_media,
    )
    try:
        live_registry.register(session_id, live)
    except SessionAlreadyLive as exc:
        await _safe_send({"type": "error", "message": str(exc)})
        await websocket.close(code=4409)
        return

    increment_metric("ws_connections_active")
    log_event("ws_live", "connect", session_id)
    start_task: asyncio.Task | None = None
    stopped = False
    levels_sent_at: float | None = None
    try:
        while True:
            msg = await websocket.receive()
            live_registry.touch(session_id)
            if msg["type"] == "websocket.disconnect":
                log_event("ws_live", "disconnect", session_id, reason="client_disconnect")
                break

            if msg.get("bytes"):
                await live.feed_microphone(msg["bytes"])
                now = time.monotonic()
                if levels_sent_at is None or now - levels_sent_at >= LEVELS_INTERVAL_SEC:
                    levels_sent_at = now
                    await _safe_send({"type": "levels", **live.levels()})
                continue

            text_payload = str(msg.get("text") or "")
            if not text_payload:
                continue
            if len(text_payload.encode("utf-8")) > MAX_WS_TEXT_BYTES:
                logger.warning("ws message too large | session_id=%s", session_id)
                continue
            try:
                payload = json.loads(text_payload)
            except ValueError:
                logger.warning("ws message not json | session_id=%s", session_id)
                continue
            if not isinstance(payload, dict):
                continue

            payload_type = str(payload.get("type") or "").strip().lower()
            if payload_type == "ping":
                await _safe_send({"type": "pong"})
            elif payload_type == "start":
                microphone["status"] = str(payload.get("microphone") or "granted").strip().lower()
                if start_task is None or start_task.done():
                    start_task = asyncio.create_task(live.start())
            elif payload_type == "text":
                await live.submit_text(str(payload.get("text") or ""))
            elif payload_type == "playback_done":
                try:
                    sink.ack(int(payload.get("seq")))
                except (TypeError, ValueError):
                    continue
            elif payload_type == "stop":
                meta = payload.get("meta") if isinstance(payload.get("meta"), dict) else None
                await live.stop(meta=meta)
                stopped = True
                break
    finally:
        if start_task is not None and not start_task.done():
            start_task.cancel()
            await asyncio.gather(start_task, return_exceptions=True)
        if not stopped:
            if len(live.turn_log):
                await live.stop()
            else:
                live.halt_media()
                await live.close_transport()
        live_registry.mark_inactive(session_id, live)
        decrement_metric("ws_connections_active")
        if websocket.client_state == WebSocketState.CONNECTED:
            try:
                await websocket.close()
            except RuntimeError:
                pass
