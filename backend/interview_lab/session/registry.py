from __future__ import annotations

import time
from threading import Lock
from typing import Any


class SessionAlreadyLive(RuntimeError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} already has a live connection")
        self.session_id = session_id


class LiveSessionRegistry:
    """At most one live session object per session id."""

    def __init__(self):
        self._lock = Lock()
        self._sessions: dict[str, dict[str, Any]] = {}

    def register(self, session_id: str, live_session: Any) -> None:
        sid = str(session_id)
        with self._lock:
            current = self._sessions.get(sid)
            if current is not None and current.get("active"):
                raise SessionAlreadyLive(sid)
            self._sessions[sid] = {
                "live_session": live_session,
                "created_at": time.time(),
                "updated_at": time.time(),
                "active": True,
            }

    def touch(self, session_id: str) -> None:
        with self._lock:
            if session_id in self._sessions:
                self._sessions[session_id]["updated_at"] = time.time()

    def mark_inactive(self, session_id: str, live_session: Any = None) -> None:
        with self._lock:
            item = self._sessions.get(session_id)
            if item is None:
                return
            if live_session is not None and item.get("live_session") is not live_session:
                return
            item["active"] = False
            item["updated_at"] = time.time()

    def get(self, session_id: str) -> Any | None:
        with self._lock:
            item = self._sessions.get(str(session_id))
            return item.get("live_session") if item else None

    def is_active(self, session_id: str) -> bool:
        with self._lock:
            item = self._sessions.get(str(session_id))
            return bool(item and item.get("active"))

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for item in self._sessions.values() if item.get("active"))

    def cleanup_inactive(self, ttl_sec: float) -> int:
        now_ts = time.time()
        cutoff = now_ts - max(30.0, float(ttl_sec or 900.0))
        removed = 0
        with self._lock:
            for session_id, data in list(self._sessions.items()):
                if bool((data or {}).get("active", False)):
                    continue
                updated_at = float((data or {}).get("updated_at") or 0.0)
                if updated_at <= cutoff:
                    self._sessions.pop(session_id, None)
                    removed += 1
        return removed


live_registry = LiveSessionRegistry()
