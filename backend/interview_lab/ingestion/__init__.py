from interview_lab.ingestion.emotions import extract_emotions
from interview_lab.ingestion.models import (
    ROLE_INTERVIEWER,
    ROLE_PERSONA,
    AssistantText,
    AudioOutput,
    Emotion,
    InboundEvent,
    Turn,
    Unknown,
    UserText,
)
from interview_lab.ingestion.normalizer import TurnLog, decode_event, extract_text, normalize_role, now_ms
from interview_lab.ingestion.store import LocalWebhookStore, SupabaseWebhookStore, WebhookStore, build_webhook_store
from interview_lab.ingestion.webhook import WebhookLedger, authenticate_webhook

__all__ = [
    "extract_emotions",
    "ROLE_INTERVIEWER",
    "ROLE_PERSONA",
    "AssistantText",
    "AudioOutput",
    "Emotion",
    "InboundEvent",
    "Turn",
    "Unknown",
    "UserText",
    "TurnLog",
    "decode_event",
    "extract_text",
    "normalize_role",
    "now_ms",
    "WebhookLedger",
    "authenticate_webhook",
    "LocalWebhookStore",
    "SupabaseWebhookStore",
    "WebhookStore",
    "build_webhook_store",
]
