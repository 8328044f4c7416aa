from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from typing import Any, Protocol

from openai import AsyncOpenAI

from interview_lab.coaching.models import LABELS, SEVERITIES, SOURCE_ADVISOR, CoachRequest, CoachTip
from interview_lab.core.config import COACH_MODEL, COACH_TIMEOUT_SEC, OPENAI_API_KEY
from interview_lab.system_metrics import observe_advisor_latency_ms

logger = logging.getLogger("interview_lab.coaching.advisor")

SYSTEM_PROMPT = """
You are the COACH (not the participant). Speak as a mentor only.

STYLE
- Be BRIEF: 1 sentence for message (<= 28 words).
- Include at most 1 concrete suggested question (4-12 words) when helpful.
- Student-friendly, kind, specific. No jargon, no emojis.

HARD RULES
- Never greet back ("Great to meet you"), never chat ("okay", "sure"), never add trailing filler ("true").
- Do not role-play the participant or persona.
- No critique for greetings or early light bio (name/age) in the first 5 interviewer turns.
- Normal scoping questions ("have you used X?") are fine.
- If the interviewer is rude or the persona is insulted, give de-escalation or boundaries guidance.
- If emotions spike (distress, anger, anxiety), acknowledge briefly, then a soft probe.
- Prefer open how/what/why over closed unless confirming.
- Output JSON ONLY in this shape: {"label": <one of: %s>,
  "message": string, "suggestion"?: string, "severity": "info"|"nudge"|"important"}.
""" % ", ".join(f'"{label}"' for label in LABELS)

MESSAGE_MAX_WORDS = 28
SUGGESTION_MAX_WORDS = 12
RECENT_TURNS = 8


class Advisor(Protocol):
    async def advise(self, request: CoachRequest) -> CoachTip | None:
        ...


def build_user_message(request: CoachRequest) -> str:
    recent = "\n".join(
        f"[{turn.get('role') or 'interviewer'}] {turn.get('text') or ''}"
        for turn in request.recent_turns[-RECENT_TURNS:]
    )
    emotions = " ".join(
        f"({item.get('name')}:{float(item.get('score') or 0.0):.2f})"
        for item in request.recent_emotions[-6:]
        if isinstance(item, dict)
    )
    return (
        f"Persona: {request.persona_brief or 'N/A'}\n"
        f"Recent turns:\n{recent}\n\n"
        f"Current interviewer text: {request.current_utterance}\n"
        f"Emotions: {emotions}\n"
        "Respond with one JSON tip only."
    )


def _scrub(text: Any) -> str:
    value = str(text or "")
    value = re.sub(r"\b(true|okay|sure)\.?\s*$", "", value, flags=re.IGNORECASE)
    value = re.sub(r"^\s*(it'?s )?great to meet you( too)?[.!]?\s*", "", value, flags=re.IGNORECASE)
    value = re.sub(r"^\s*nice to meet you( too)?[.!]?\s*", "", value, flags=re.IGNORECASE)
    return re.sub(r"\s+", " ", value).strip()


def _shorten(text: str, max_words: int) -> str:
    return " ".join(text.split(" ")[:max_words])


def sanitize_tip(payload: Any) -> CoachTip | None:
    if not isinstance(payload, dict):
        return None
    message = _shorten(_scrub(payload.get("message")), MESSAGE_MAX_WORDS)
    if not message:
        return None
    label = str(payload.get("label") or "").strip()
    if label not in LABELS:
        label = "follow_up_opportunity"
    severity = str(payload.get("severity") or "").strip().lower()
    if severity not in SEVERITIES:
        severity = "nudge"
    suggestion = _shorten(_scrub(payload.get("suggestion")), SUGGESTION_MAX_WORDS) or None
    return CoachTip(label=label, message=message, severity=severity, suggestion=suggestion, source=SOURCE_ADVISOR)


class OpenAIAdvisor:
    """Advisory coach backed by a chat completion; any failure yields None."""

    def __init__(
        self,
        client: Any | None = None,
        model: str = COACH_MODEL,
        timeout_sec: float = COACH_TIMEOUT_SEC,
        retries: int = 1,
    ):
        if client is None and OPENAI_API_KEY:
            client = AsyncOpenAI(api_key=OPENAI_API_KEY)
        self.client = client
        self.model = model
        self.timeout_sec = float(timeout_sec)
        self.retries = max(0, int(retries))

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def advise(self, request: CoachRequest) -> CoachTip | None:
        if self.client is None or not str(request.current_utterance or "").strip():
            return None

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_user_message(request)},
        ]
        started = time.perf_counter()
        last_error: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                response = await asyncio.wait_for(
                    self.client.chat.completions.create(
                        model=self.model,
                        messages=messages,
                        temperature=0.2,
                        response_format={"type": "json_object"},
                        max_tokens=120,
                    ),
                    timeout=self.timeout_sec,
                )
                content = response.choices[0].message.content or "{}"
                tip = sanitize_tip(json.loads(content))
                observe_advisor_latency_ms((time.perf_counter() - started) * 1000.0)
                return tip
            except asyncio.TimeoutError as exc:
                last_error = exc
                logger.warning("advisor timeout | attempt=%s", attempt + 1)
            except ValueError as exc:
                logger.warning("advisor returned malformed JSON | err=%s", exc)
                return None
            except Exception as exc:
                last_error = exc
                logger.warning("advisor failure | attempt=%s err=%s", attempt + 1, exc)

            if attempt < self.retries:
                await asyncio.sleep(0.35 * (attempt + 1))

        logger.warning("advisor fallback activated | err=%s", last_error)
        return None
