from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from interview_lab.core.config import REPORT_STORE
from interview_lab.db.json_store import DATA_DIR, JsonDocumentStore
from interview_lab.db.supabase_rest import SupabaseRestClient
from interview_lab.finalization.report import SessionReport

logger = logging.getLogger("interview_lab.finalization.store")


class ReportStore(Protocol):
    async def save(self, report: SessionReport) -> None:
        ...

    async def load(self, session_id: str) -> SessionReport | None:
        ...


class LocalReportStore:
    """Reports as JSON documents keyed by session id."""

    def __init__(self, path: Path | str = DATA_DIR / "session_reports.json"):
        self.path = Path(path)
        self._documents = JsonDocumentStore(self.path)

    async def save(self, report: SessionReport) -> None:
        self._documents.put(report.session_id, report.to_dict())

    async def load(self, session_id: str) -> SessionReport | None:
        sid = str(session_id or "").strip()
        if not sid:
            return None
        data = self._documents.get(sid)
        return SessionReport.from_dict(data) if isinstance(data, dict) else None


class SupabaseReportStore:
    table = "session_reports"

    def __init__(self, client: SupabaseRestClient | None = None):
        self.client = client or SupabaseRestClient()

    async def save(self, report: SessionReport) -> None:
        payload = report.to_dict()
        row = {"session_id": report.session_id, "meta": payload["meta"], "turns": payload["turns"]}
        ok = await self.client.upsert(self.table, row, on_conflict="session_id")
        if not ok:
            raise OSError(f"report upsert rejected for session {report.session_id}")

    async def load(self, session_id: str) -> SessionReport | None:
        row = await self.client.select_one(self.table, {"session_id": str(session_id)}, "session_id,meta,turns")
        if not row:
            return None
        return SessionReport.from_dict({"meta": row.get("meta") or {"id": session_id}, "turns": row.get("turns") or []})


def build_report_store() -> ReportStore:
    if REPORT_STORE == "supabase":
        client = SupabaseRestClient()
        if client.enabled:
            return SupabaseReportStore(client)
        logger.warning("REPORT_STORE=supabase but Supabase is not configured; using local store")
    return LocalReportStore()
