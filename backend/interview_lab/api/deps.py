from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from interview_lab.coaching import CoachingCueEngine, CoachRatePolicy, OpenAIAdvisor
from interview_lab.core.config import COACH_ENABLED
from interview_lab.finalization import ReportCache, SessionFinalizer, build_report_store
from interview_lab.ingestion import WebhookLedger, build_webhook_store
from interview_lab.live.credentials import CredentialService, SessionContextSource, build_context_source
from interview_lab.live.transport import HumeTransport, Transport


@dataclass
class Services:
    context_source: SessionContextSource
    credentials: CredentialService
    finalizer: SessionFinalizer
    ledger: WebhookLedger
    coach: CoachingCueEngine | None
    advisor: OpenAIAdvisor | None
    rate_policy: CoachRatePolicy = field(default_factory=CoachRatePolicy)
    transport_factory: Callable[[], Transport] = HumeTransport


def build_services() -> Services:
    source = build_context_source()
    advisor = OpenAIAdvisor()
    if not advisor.enabled:
        advisor = None
    ledger = WebhookLedger(store=build_webhook_store())
    return Services(
        context_source=source,
        credentials=CredentialService(source),
        finalizer=SessionFinalizer(build_report_store(), cache=ReportCache(), ledger=ledger),
        ledger=ledger,
        coach=CoachingCueEngine(advisor=advisor) if COACH_ENABLED else None,
        advisor=advisor,
    )


_services: Services | None = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Services | None) -> None:
    global _services
    _services = services
