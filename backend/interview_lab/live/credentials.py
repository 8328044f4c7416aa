from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Protocol

import httpx

from interview_lab.core.config import HUME_CLIENT_ID, HUME_CLIENT_SECRET, HUME_TOKEN_URL
from interview_lab.db.supabase_rest import SupabaseRestClient
from interview_lab.live.errors import ConfigurationError
from interview_lab.persona import PersonaKnobs, build_system_prompt, derive_knobs, persona_snapshot

logger = logging.getLogger("interview_lab.live.credentials")

_PERSONA_COLUMNS = "id,name,age,gender,occupation,techfamiliarity,personality,goals,frustrations,painpoints,notes,demographics"


class TokenRequestError(ConfigurationError):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = int(status or 502)


@dataclass
class AccessToken:
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 3600


@dataclass
class SessionContext:
    session_id: str
    token: AccessToken
    persona: dict[str, Any]
    project: dict[str, Any] | None
    knobs: PersonaKnobs
    system_prompt: str
    persona_snapshot: dict[str, Any] = field(default_factory=dict)

    @property
    def voice_config_id(self) -> str:
        return self.knobs.voice_profile_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "access_token": self.token.access_token,
            "token_type": self.token.token_type,
            "expires_in": self.token.expires_in,
            "persona": self.persona_snapshot,
            "persona_name": self.persona_snapshot.get("name") or "Participant",
            "project": self.project,
            "knobs": self.knobs.to_dict(),
            "config_id": self.voice_config_id,
            "persona_prompt": self.system_prompt,
        }


class SessionContextSource(Protocol):
    async def load(self, session_id: str) -> tuple[dict[str, Any], dict[str, Any] | None] | None:
        ...


class LocalSessionContextSource:
    def __init__(self):
        self._lock = Lock()
        self._rows: dict[str, tuple[dict[str, Any], dict[str, Any] | None]] = {}

    def register(self, session_id: str, persona: dict[str, Any], project: dict[str, Any] | None = None) -> None:
        with self._lock:
            self._rows[str(session_id)] = (dict(persona or {}), dict(project) if project else None)

    async def load(self, session_id: str):
        with self._lock:
            row = self._rows.get(str(session_id or ""))
        if row is None:
            return None
        persona, project = row
        return dict(persona), (dict(project) if project else None)


class SupabaseSessionContextSource:
    def __init__(self, client: SupabaseRestClient | None = None):
        self.client = client or SupabaseRestClient()

    async def load(self, session_id: str):
        session = await self.client.select_one("sessions", {"id": session_id}, "id,persona_id,project_id")
        if not session:
            return None
        persona_id = session.get("persona_id") or session.get("personaId")
        project_id = session.get("project_id") or session.get("projectId")
        persona = await self.client.select_one("personas", {"id": str(persona_id or "")}, _PERSONA_COLUMNS)
        if not persona:
            return None
        project = None
        if project_id:
            project = await self.client.select_one("projects", {"id": str(project_id)}, "id,title,description")
        return persona, project


class HumeTokenClient:
    def __init__(
        self,
        client_id: str = HUME_CLIENT_ID,
        client_secret: str = HUME_CLIENT_SECRET,
        token_url: str = HUME_TOKEN_URL,
        timeout_sec: float = 8.0,
    ):
        self.client_id = str(client_id or "").strip()
        self.client_secret = str(client_secret or "").strip()
        self.token_url = token_url
        self.timeout_sec = float(timeout_sec)

    async def fetch(self) -> AccessToken:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("Missing Hume credentials")
        try:
            async with httpx.AsyncClient(timeout=self.timeout_sec) as client:
                response = await client.post(
                    self.token_url,
                    data={"grant_type": "client_credentials"},
                    auth=(self.client_id, self.client_secret),
                )
        except httpx.HTTPError as exc:
            raise TokenRequestError(502, f"Token endpoint unreachable: {exc}") from exc

        if response.status_code != 200:
            raise TokenRequestError(response.status_code, f"Token endpoint responded with status {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenRequestError(502, "Token endpoint returned invalid JSON") from exc

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise TokenRequestError(502, "Token missing in response")
        try:
            expires_in = int(float(payload.get("expires_in") or 3600))
        except (TypeError, ValueError):
            expires_in = 3600
        return AccessToken(
            access_token=token,
            token_type=str(payload.get("token_type") or "Bearer"),
            expires_in=expires_in if expires_in > 0 else 3600,
        )


class CredentialService:
    """Resolves a fresh access token and persona/project context for every session start."""

    def __init__(
        self,
        source: SessionContextSource,
        token_client: HumeTokenClient | None = None,
        voice_table: dict[str, str] | None = None,
    ):
        self.source = source
        self.token_client = token_client or HumeTokenClient()
        self.voice_table = voice_table

    async def fetch(self, session_id: str) -> SessionContext:
        sid = str(session_id or "").strip()
        if not sid:
            raise ConfigurationError("sessionId is required")

        try:
            row = await self.source.load(sid)
        except httpx.HTTPError as exc:
            raise ConfigurationError(f"Session lookup failed: {exc}") from exc
        if row is None:
            raise ConfigurationError("Session not found")

        persona, project = row
        knobs = derive_knobs(persona, voice_table=self.voice_table)
        token = await self.token_client.fetch()
        return SessionContext(
            session_id=sid,
            token=token,
            persona=persona,
            project=project,
            knobs=knobs,
            system_prompt=build_system_prompt(persona, project, knobs),
            persona_snapshot=persona_snapshot(persona),
        )


def build_context_source() -> SessionContextSource:
    client = SupabaseRestClient()
    if client.enabled:
        return SupabaseSessionContextSource(client)
    logger.info("Supabase not configured; using local session context source")
    return LocalSessionContextSource()
