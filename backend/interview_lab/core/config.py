import os
from pathlib import Path
from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[2]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=True)


def env_flag(name: str, default: str = "false") -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "on"}


def env_str(*names: str, default: str = "") -> str:
    for name in names:
        value = str(os.getenv(name) or "").strip()
        if value:
            return value
    return default


OPENAI_API_KEY = env_str("OPENAI_API_KEY")
COACH_MODEL = env_str("COACH_MODEL", default="gpt-4o-mini")
COACH_TIMEOUT_SEC = max(1.0, float(os.getenv("COACH_TIMEOUT_SEC", "6")))
COACH_ENABLED = env_flag("COACH_ENABLED", "true")

HUME_CLIENT_ID = env_str("HUME_CLIENT_ID", "HUME_API_KEY")
HUME_CLIENT_SECRET = env_str("HUME_CLIENT_SECRET", "HUME_API_SECRET")
HUME_TOKEN_URL = env_str("HUME_TOKEN_URL", default="https://api.hume.ai/oauth2-cc/token")
HUME_EVI_URL = env_str("HUME_EVI_URL", default="wss://api.hume.ai/v0/evi/chat")
HUME_CONFIG_ID = env_str("HUME_CONFIG_ID")
HUME_WEBHOOK_SECRET = env_str("HUME_WEBHOOK_SECRET")

SUPABASE_URL = env_str("SUPABASE_URL")
SUPABASE_SERVICE_KEY = env_str("SUPABASE_SERVICE_KEY", "SUPABASE_KEY")

REPORT_STORE = env_str("REPORT_STORE", default="local").lower()
REPORT_CACHE_MAX = max(8, int(os.getenv("REPORT_CACHE_MAX", "256")))

COACH_DEBOUNCE_MS = max(0, int(os.getenv("COACH_DEBOUNCE_MS", "500")))
COACH_COOLDOWN_MS = max(0, int(os.getenv("COACH_COOLDOWN_MS", "7000")))

FINALIZE_ATTEMPTS = max(1, int(os.getenv("FINALIZE_ATTEMPTS", "3")))
FINALIZE_TIMEOUT_SEC = max(0.1, float(os.getenv("FINALIZE_TIMEOUT_SEC", "2.5")))

WEBHOOK_SEEN_LIMIT = max(10, int(os.getenv("WEBHOOK_SEEN_LIMIT", "200")))

AUDIO_SAMPLE_RATE = max(8000, int(os.getenv("AUDIO_SAMPLE_RATE", "16000")))
AUDIO_CHUNK_MS = max(20, int(os.getenv("AUDIO_CHUNK_MS", "250")))
HALF_DUPLEX_THRESHOLD = min(1.0, max(0.0, float(os.getenv("HALF_DUPLEX_THRESHOLD", "0.2"))))
HALF_DUPLEX_HOLD_MS = max(0, int(os.getenv("HALF_DUPLEX_HOLD_MS", "500")))

SESSION_CLEANUP_TTL_SEC = max(60, int(os.getenv("SESSION_CLEANUP_TTL_SEC", "1800")))
SESSION_CLEANUP_INTERVAL_SEC = max(30, int(os.getenv("SESSION_CLEANUP_INTERVAL_SEC", "120")))
