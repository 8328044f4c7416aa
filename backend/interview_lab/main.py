from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import asyncio
import logging
import os

from interview_lab.api.sessions import router as sessions_router
from interview_lab.api.webhook import router as webhook_router
from interview_lab.api.ws_live import router as live_ws_router
from interview_lab.core.config import SESSION_CLEANUP_INTERVAL_SEC, SESSION_CLEANUP_TTL_SEC
from interview_lab.session.registry import live_registry
from interview_lab.system_metrics import get_metrics_snapshot

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

app = FastAPI(title="Persona Interview Lab")
logger = logging.getLogger("interview_lab.main")


def _get_allowed_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if not raw:
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    return [item.strip() for item in raw.split(",") if item.strip()]


_allowed_origins = _get_allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

_session_cleanup_task: asyncio.Task | None = None


@app.on_event("startup")
async def startup_banner():
    global _session_cleanup_task
    logger.info("[SYSTEM] CORS allow_origins=%s", _allowed_origins)

    async def _session_cleanup_loop():
        while True:
            await asyncio.sleep(SESSION_CLEANUP_INTERVAL_SEC)
            removed = live_registry.cleanup_inactive(SESSION_CLEANUP_TTL_SEC)
            if removed > 0:
                logger.info("[SYSTEM] cleaned inactive live sessions=%s", removed)

    _session_cleanup_task = asyncio.create_task(_session_cleanup_loop())


@app.on_event("shutdown")
async def shutdown_handler():
    global _session_cleanup_task
    if _session_cleanup_task is not None:
        _session_cleanup_task.cancel()
        try:
            await _session_cleanup_task
        except asyncio.CancelledError:
            pass
        finally:
            _session_cleanup_task = None
    logger.info("[SYSTEM] shutdown complete")


@app.get("/health")
async def health():
    return {"status": "ok", "service": "interview-lab"}


@app.get("/metrics")
async def metrics():
    return get_metrics_snapshot(extra={"live_sessions_registered": live_registry.active_count()})


app.include_router(sessions_router)
app.include_router(webhook_router)
app.include_router(live_ws_router)
