from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from interview_lab.api.deps import Services, get_services
from interview_lab.core.config import HUME_WEBHOOK_SECRET
from interview_lab.ingestion import authenticate_webhook
from interview_lab.system_metrics import increment_metric

logger = logging.getLogger("interview_lab.api.webhook")

router = APIRouter()

SIGNATURE_HEADER = "x-hume-signature"


def webhook_secret() -> str:
    return HUME_WEBHOOK_SECRET


@router.post("/api/hume/webhook")
async def hume_webhook(
    request: Request,
    services: Services = Depends(get_services),
    secret: str = Depends(webhook_secret),
):
    if not authenticate_webhook(request.headers.get(SIGNATURE_HEADER), secret):
        increment_metric("webhook_rejected_total")
        logger.warning("webhook rejected | reason=signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    raw = await request.body()
    try:
        payload = json.loads(raw.decode("utf-8") or "null")
    except (UnicodeDecodeError, ValueError):
        increment_metric("webhook_rejected_total")
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict):
        increment_metric("webhook_rejected_total")
        raise HTTPException(status_code=400, detail="Expected a JSON object")

    outcome = await services.ledger.ingest(payload)
    return outcome.to_dict()
