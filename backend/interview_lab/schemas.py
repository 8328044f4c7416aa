from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SessionContextRequest(BaseModel):
    persona: dict[str, Any] = Field(default_factory=dict)
    project: dict[str, Any] | None = None


class TurnPayload(BaseModel):
    role: str
    text: str
    at: int | None = None


class StopRequest(BaseModel):
    meta: dict[str, Any] = Field(default_factory=dict)
    turns: list[TurnPayload] | None = None


class CoachSample(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = ""
    last_user_turns: list[str] = Field(default_factory=list, alias="lastUserTurns")
    last_assist_turns: list[str] = Field(default_factory=list, alias="lastAssistTurns")
    persona_knobs: dict[str, Any] | None = Field(default=None, alias="personaKnobs")


class CoachResponse(BaseModel):
    hints: list[dict[str, Any]]
