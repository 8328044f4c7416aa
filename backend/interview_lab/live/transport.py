from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any, AsyncIterator, Protocol
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

from interview_lab.core.config import HUME_EVI_URL
from interview_lab.live.errors import TransportError

logger = logging.getLogger("interview_lab.live.transport")


class Transport(Protocol):
    @property
    def is_open(self) -> bool:
        ...

    async def open(self, access_token: str, config_id: str | None = None) -> None:
        ...

    async def send_json(self, payload: dict[str, Any]) -> None:
        ...

    async def send_audio(self, chunk: bytes) -> None:
        ...

    def events(self) -> AsyncIterator[Any]:
        ...

    async def close(self) -> None:
        ...


def session_settings_message(system_prompt: str) -> dict[str, Any]:
    return {
        "type": "session_settings",
        "system_prompt": str(system_prompt or ""),
        "models": {"prosody": {"enable": True}},
    }


def user_input_message(text: str) -> dict[str, Any]:
    return {"type": "user_input", "text": str(text or "")}


class HumeTransport:
    """EVI chat socket: JSON control frames plus base64 audio in both directions."""

    def __init__(self, url: str = HUME_EVI_URL, open_timeout_sec: float = 10.0):
        self.url = url
        self.open_timeout_sec = float(open_timeout_sec)
        self._ws = None
        self._open = False
        self._closed = False
        self._send_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._open and not self._closed

    async def open(self, access_token: str, config_id: str | None = None) -> None:
        if self._ws is not None:
            return
        params = {"access_token": access_token}
        if config_id and config_id != "default":
            params["config_id"] = config_id
        try:
            self._ws = await asyncio.wait_for(
                websockets.connect(
                    f"{self.url}?{urlencode(params)}",
                    ping_interval=5,
                    ping_timeout=20,
                    max_size=None,
                ),
                timeout=self.open_timeout_sec,
            )
        except asyncio.TimeoutError as exc:
            raise TransportError("Timed out opening voice transport") from exc
        except (OSError, websockets.InvalidURI, websockets.InvalidHandshake) as exc:
            raise TransportError(f"Voice transport open failed: {exc}") from exc
        self._open = True
        logger.info("voice transport connected")

    async def send_json(self, payload: dict[str, Any]) -> None:
        if not self.is_open or self._ws is None:
            raise TransportError("Voice transport is not open")
        async with self._send_lock:
            try:
                await self._ws.send(json.dumps(payload, ensure_ascii=False))
            except ConnectionClosed as exc:
                self._open = False
                raise TransportError("Voice transport closed while sending") from exc

    async def send_audio(self, chunk: bytes) -> None:
        await self.send_json({"type": "audio_input", "data": base64.b64encode(chunk).decode("ascii")})

    async def events(self) -> AsyncIterator[Any]:
        if self._ws is None:
            return
        try:
            async for message in self._ws:
                if isinstance(message, (bytes, bytearray)):
                    yield bytes(message)
                    continue
                try:
                    yield json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("voice transport sent non-JSON frame | length=%s", len(message))
        except ConnectionClosed as exc:
            logger.info("voice transport closed by remote | code=%s", getattr(exc, "code", None))
        finally:
            self._open = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._open = False
        ws = self._ws
        if ws is None:
            return
        try:
            await asyncio.wait_for(ws.close(), timeout=2.0)
        except (asyncio.TimeoutError, ConnectionClosed, OSError) as exc:
            logger.warning("voice transport close error | err=%s", exc)
