from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Protocol

from interview_lab.core.config import FINALIZE_ATTEMPTS, FINALIZE_TIMEOUT_SEC
from interview_lab.core.logger import log_event
from interview_lab.finalization.report import ReportCache, SessionReport, build_report
from interview_lab.finalization.store import ReportStore
from interview_lab.ingestion.models import Turn
from interview_lab.ingestion.webhook import WebhookLedger
from interview_lab.system_metrics import increment_metric

logger = logging.getLogger("interview_lab.finalization.finalizer")


class Finalizable(Protocol):
    session_id: str

    def halt_media(self) -> None:
        ...

    async def close_transport(self) -> None:
        ...

    def report_turns(self) -> list[Turn]:
        ...

    def report_meta(self) -> dict[str, Any]:
        ...


@dataclass
class FinalizeResult:
    session_id: str
    ok: bool
    attempts: int
    report: SessionReport | None = None
    error: str | None = None
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ok": self.ok,
            "session_id": self.session_id,
            "attempts": self.attempts,
            "retryable": self.retryable,
        }
        if self.error:
            payload["error"] = self.error
        if self.report is not None:
            payload["report"] = self.report.to_dict()
        return payload


class SessionFinalizer:
    """
    Stop protocol: halt media now, end the transport (bounded), snapshot the report
    into the cache, then persist with bounded attempts.
    At most one persistence run per session is in flight.
    """

    def __init__(
        self,
        store: ReportStore,
        cache: ReportCache | None = None,
        ledger: WebhookLedger | None = None,
        attempts: int = FINALIZE_ATTEMPTS,
        timeout_sec: float = FINALIZE_TIMEOUT_SEC,
        backoff_sec: float = 0.35,
        transport_close_timeout_sec: float = 1.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.cache = cache or ReportCache()
        self.ledger = ledger if ledger is not None else WebhookLedger()
        self.attempts = max(1, int(attempts))
        self.timeout_sec = float(timeout_sec)
        self.backoff_sec = max(0.0, float(backoff_sec))
        self.transport_close_timeout_sec = float(transport_close_timeout_sec)
        self._sleep = sleep
        self._inflight: dict[str, asyncio.Task] = {}
        self._results: OrderedDict[str, FinalizeResult] = OrderedDict()

    async def stop(
        self,
        session_id: str,
        live: Finalizable | None = None,
        turns: Iterable[Any] | None = None,
        meta: dict[str, Any] | None = None,
    ) -> FinalizeResult:
        sid = str(session_id)
        if live is not None:
            self._halt(live)

        existing = self._inflight.get(sid)
        if existing is not None and not existing.done():
            log_event("finalize", "stop_joined", sid)
            return await asyncio.shield(existing)

        previous = self._results.get(sid)
        if previous is not None and previous.ok:
            log_event("finalize", "stop_repeated", sid)
            return previous

        task = asyncio.create_task(self._finalize(sid, live, turns, meta))
        self._inflight[sid] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._inflight.get(sid) is task:
                self._inflight.pop(sid, None)

    async def retry(self, session_id: str) -> FinalizeResult:
        sid = str(session_id)
        existing = self._inflight.get(sid)
        if existing is not None and not existing.done():
            return await asyncio.shield(existing)
        report = self.cache.get(sid)
        if report is None:
            return FinalizeResult(session_id=sid, ok=False, attempts=0, error="No snapshot to persist")

        task = asyncio.create_task(self._persist(report))
        self._inflight[sid] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._inflight.get(sid) is task:
                self._inflight.pop(sid, None)

    def _halt(self, live: Finalizable) -> None:
        try:
            live.halt_media()
        except Exception as exc:
            logger.warning("halt media failed | session_id=%s err=%s", live.session_id, exc)

    async def _finalize(
        self,
        session_id: str,
        live: Finalizable | None,
        turns: Iterable[Any] | None,
        meta: dict[str, Any] | None,
    ) -> FinalizeResult:
        merged_meta: dict[str, Any] = {}
        if live is not None:
            try:
                await asyncio.wait_for(live.close_transport(), timeout=self.transport_close_timeout_sec)
            except asyncio.TimeoutError:
                logger.warning("transport close timed out | session_id=%s", session_id)
            except Exception as exc:
                logger.warning("transport close failed | session_id=%s err=%s", session_id, exc)
            merged_meta.update(live.report_meta())
            if turns is None:
                turns = live.report_turns()
        if turns is None:
            await self.ledger.hydrate(session_id)
            turns = self.ledger.turns(session_id)
        merged_meta.update(meta or {})

        report = build_report(session_id, turns, merged_meta)
        self.cache.put(report)
        log_event("finalize", "snapshot", session_id, turns=len(report.turns), duration_ms=report.duration_ms)
        return await self._persist(report)

    async def _persist(self, report: SessionReport) -> FinalizeResult:
        sid = report.session_id
        last_error = ""
        for attempt in range(1, self.attempts + 1):
            increment_metric("finalize_attempts_total")
            try:
                await asyncio.wait_for(self.store.save(report), timeout=self.timeout_sec)
                increment_metric("finalize_success_total")
                log_event("finalize", "persisted", sid, attempt=attempt)
                return self._remember(FinalizeResult(session_id=sid, ok=True, attempts=attempt, report=report))
            except asyncio.TimeoutError:
                last_error = f"persist timed out after {self.timeout_sec}s"
                logger.warning("finalize persist timeout | session_id=%s attempt=%s", sid, attempt)
            except Exception as exc:
                last_error = str(exc) or exc.__class__.__name__
                logger.warning("finalize persist failure | session_id=%s attempt=%s err=%s", sid, attempt, exc)

            if attempt < self.attempts:
                await self._sleep(self.backoff_sec * attempt)

        increment_metric("finalize_failures_total")
        logger.error("finalize exhausted | session_id=%s attempts=%s err=%s", sid, self.attempts, last_error)
        return self._remember(
            FinalizeResult(
                session_id=sid,
                ok=False,
                attempts=self.attempts,
                report=report,
                error=last_error or "persist failed",
                retryable=True,
            )
        )

    def _remember(self, result: FinalizeResult) -> FinalizeResult:
        self._results[result.session_id] = result
        self._results.move_to_end(result.session_id)
        while len(self._results) > self.cache.max_entries:
            self._results.popitem(last=False)
        return result

    async def get_report(self, session_id: str) -> SessionReport | None:
        """Cache, then durable store, then a rebuild from webhook turns. None means no report yet."""
        sid = str(session_id or "").strip()
        if not sid:
            return None
        report = self.cache.get(sid)
        if report is not None:
            return report
        try:
            report = await asyncio.wait_for(self.store.load(sid), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            logger.warning("report load timed out | session_id=%s", sid)
            report = None
        except Exception as exc:
            logger.warning("report load failed | session_id=%s err=%s", sid, exc)
            report = None
        if report is not None:
            self.cache.put(report)
            return report

        await self.ledger.hydrate(sid)
        turns = self.ledger.turns(sid)
        if not turns:
            return None
        meta: dict[str, Any] = {"startedAt": turns[0].timestamp, "reconstructed": True}
        ended_at = self.ledger.ended_at(sid)
        meta["stoppedAt"] = ended_at if ended_at is not None else turns[-1].timestamp
        report = build_report(sid, turns, meta)
        self.cache.put(report)
        log_event("finalize", "reconstructed", sid, turns=len(report.turns))
        return report
