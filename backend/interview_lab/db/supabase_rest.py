from __future__ import annotations

import logging
from typing import Any

import httpx

from interview_lab.core.config import SUPABASE_SERVICE_KEY, SUPABASE_URL

logger = logging.getLogger("interview_lab.db.supabase_rest")


class SupabaseRestClient:
    """
    HTTP-only Supabase access (PostgREST).
    Returns None / [] when the project is not configured.
    """

    def __init__(self, url: str = SUPABASE_URL, api_key: str = SUPABASE_SERVICE_KEY, timeout_sec: float = 6.0):
        self.url = str(url or "").rstrip("/")
        self.api_key = str(api_key or "")
        self.timeout_sec = float(timeout_sec)

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.api_key)

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def select_one(self, table: str, filters: dict[str, str], columns: str = "*") -> dict[str, Any] | None:
        if not self.enabled:
            return None
        params = {"select": columns, "limit": "1"}
        params.update({key: f"eq.{value}" for key, value in filters.items()})
        async with httpx.AsyncClient(timeout=self.timeout_sec) as client:
            response = await client.get(f"{self.url}/rest/v1/{table}", params=params, headers=self._headers())
        if response.status_code != 200:
            logger.warning("supabase select failed | table=%s status=%s", table, response.status_code)
            return None
        rows = response.json()
        if isinstance(rows, list) and rows and isinstance(rows[0], dict):
            return rows[0]
        return None

    async def upsert(self, table: str, row: dict[str, Any], on_conflict: str = "id") -> bool:
        if not self.enabled:
            return False
        async with httpx.AsyncClient(timeout=self.timeout_sec) as client:
            response = await client.post(
                f"{self.url}/rest/v1/{table}",
                params={"on_conflict": on_conflict},
                json=row,
                headers=self._headers({"Prefer": "resolution=merge-duplicates,return=minimal"}),
            )
        if response.status_code >= 300:
            logger.warning("supabase upsert failed | table=%s status=%s", table, response.status_code)
            return False
        return True
