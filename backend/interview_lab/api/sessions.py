from __future__ import annotations

import logging
from itertools import zip_longest

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from interview_lab.analytics import build_session_analytics, build_summary_sentence
from interview_lab.api.deps import Services, get_services
from interview_lab.coaching import CoachRequest, advise_or_fallback, is_greeting_or_short
from interview_lab.finalization import FinalizeResult
from interview_lab.ingestion import ROLE_INTERVIEWER, ROLE_PERSONA
from interview_lab.live.credentials import LocalSessionContextSource, TokenRequestError
from interview_lab.live.errors import ConfigurationError
from interview_lab.schemas import CoachResponse, CoachSample, SessionContextRequest, StopRequest
from interview_lab.session.registry import live_registry

logger = logging.getLogger("interview_lab.api.sessions")

router = APIRouter()


async def _context_payload(services: Services, session_id: str) -> dict:
    try:
        context = await services.credentials.fetch(session_id)
    except TokenRequestError as exc:
        status = exc.status if 400 <= exc.status < 600 else 502
        raise HTTPException(status_code=status, detail=str(exc))
    except ConfigurationError as exc:
        message = str(exc) or "Session context unavailable"
        status = 404 if "not found" in message.lower() else 400
        raise HTTPException(status_code=status, detail=message)
    return context.to_dict()


@router.get("/api/sessions/{session_id}/context")
async def get_session_context(session_id: str, services: Services = Depends(get_services)):
    return await _context_payload(services, session_id)


@router.post("/api/sessions/{session_id}/context")
async def register_session_context(
    session_id: str,
    body: SessionContextRequest,
    services: Services = Depends(get_services),
):
    source = services.context_source
    if not isinstance(source, LocalSessionContextSource):
        raise HTTPException(status_code=400, detail="Session context is managed by the database")
    source.register(session_id, body.persona, body.project)
    return await _context_payload(services, session_id)


def _finalize_response(result: FinalizeResult) -> JSONResponse | dict:
    if result.ok:
        return result.to_dict()
    return JSONResponse(status_code=503, content=result.to_dict())


@router.post("/api/sessions/{session_id}/stop")
async def stop_session(session_id: str, body: StopRequest | None = None, services: Services = Depends(get_services)):
    body = body or StopRequest()
    live = live_registry.get(session_id) if live_registry.is_active(session_id) else None
    if live is not None:
        result = await live.stop(meta=body.meta)
        live_registry.mark_inactive(session_id, live)
    else:
        turns = [turn.model_dump() for turn in body.turns] if body.turns is not None else None
        result = await services.finalizer.stop(session_id, turns=turns, meta=body.meta)
    if not result.ok:
        logger.warning("stop not persisted | session_id=%s attempts=%s", session_id, result.attempts)
    return _finalize_response(result)


@router.post("/api/sessions/{session_id}/stop/retry")
async def retry_stop(session_id: str, services: Services = Depends(get_services)):
    result = await services.finalizer.retry(session_id)
    if result.attempts == 0:
        raise HTTPException(status_code=404, detail="No report snapshot for session")
    return _finalize_response(result)


@router.get("/api/sessions/{session_id}/report")
async def get_report(session_id: str, services: Services = Depends(get_services)):
    report = await services.finalizer.get_report(session_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return report.to_dict()


@router.get("/api/sessions/{session_id}/analytics")
async def get_analytics(session_id: str, services: Services = Depends(get_services)):
    report = await services.finalizer.get_report(session_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    analytics = build_session_analytics(report)
    analytics["summary"] = build_summary_sentence(analytics)
    return analytics


def _resolve_coach_session(request: Request) -> str:
    header = str(request.headers.get("x-session-id") or "").strip()
    return header or "anon"


@router.post("/api/coach", response_model=CoachResponse)
async def coach(sample: CoachSample, request: Request, services: Services = Depends(get_services)):
    question = sample.question.strip()
    if not question or is_greeting_or_short(question):
        return {"hints": []}
    session_id = _resolve_coach_session(request)
    if services.rate_policy.blocked(session_id):
        return {"hints": []}

    recent: list[dict] = []
    for user_text, assist_text in zip_longest(sample.last_user_turns[-3:], sample.last_assist_turns[-3:]):
        if user_text:
            recent.append({"role": ROLE_INTERVIEWER, "text": user_text})
        if assist_text:
            recent.append({"role": ROLE_PERSONA, "text": assist_text})
    brief = ", ".join(f"{key}={value}" for key, value in sorted((sample.persona_knobs or {}).items()))
    tip = await advise_or_fallback(
        services.advisor,
        CoachRequest(current_utterance=question, recent_turns=recent, persona_brief=brief),
    )
    services.rate_policy.note(session_id)
    return {"hints": [tip.to_dict()]}
