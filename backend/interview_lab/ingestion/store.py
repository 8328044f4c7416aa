from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

from interview_lab.core.config import REPORT_STORE
from interview_lab.db.json_store import DATA_DIR, JsonDocumentStore
from interview_lab.db.supabase_rest import SupabaseRestClient

logger = logging.getLogger("interview_lab.ingestion.store")


class WebhookStore(Protocol):
    """
    Durable webhook state per session:
    {"turns": [...], "seen_event_ids": [...], "signals": [...], "ended_at": int | None}
    """

    async def load(self, session_id: str) -> dict[str, Any] | None:
        ...

    async def save(self, session_id: str, state: dict[str, Any]) -> None:
        ...


class LocalWebhookStore:
    def __init__(self, path: Path | str = DATA_DIR / "webhook_sessions.json"):
        self.path = Path(path)
        self._documents = JsonDocumentStore(self.path)

    async def load(self, session_id: str) -> dict[str, Any] | None:
        return self._documents.get(session_id)

    async def save(self, session_id: str, state: dict[str, Any]) -> None:
        self._documents.put(session_id, state)


class SupabaseWebhookStore:
    table = "webhook_sessions"
    columns = "session_id,turns,seen_event_ids,signals,ended_at"

    def __init__(self, client: SupabaseRestClient | None = None):
        self.client = client or SupabaseRestClient()

    async def load(self, session_id: str) -> dict[str, Any] | None:
        row = await self.client.select_one(self.table, {"session_id": str(session_id)}, self.columns)
        if not row:
            return None
        return {
            "turns": row.get("turns") or [],
            "seen_event_ids": row.get("seen_event_ids") or [],
            "signals": row.get("signals") or [],
            "ended_at": row.get("ended_at"),
        }

    async def save(self, session_id: str, state: dict[str, Any]) -> None:
        row = {"session_id": str(session_id)}
        row.update(state)
        ok = await self.client.upsert(self.table, row, on_conflict="session_id")
        if not ok:
            raise OSError(f"webhook state upsert rejected for session {session_id}")


def build_webhook_store() -> WebhookStore:
    if REPORT_STORE == "supabase":
        client = SupabaseRestClient()
        if client.enabled:
            return SupabaseWebhookStore(client)
        logger.warning("REPORT_STORE=supabase but Supabase is not configured; using local webhook store")
    return LocalWebhookStore()
