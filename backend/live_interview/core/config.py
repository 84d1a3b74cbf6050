import os
from pathlib import Path
from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[2]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "on"}


OPENAI_API_KEY = str(os.getenv("OPENAI_API_KEY") or "").strip()
OPENAI_API_BASE = str(os.getenv("OPENAI_API_BASE") or "https://api.openai.com/v1").strip().rstrip("/")
OPENAI_REALTIME_WS_URL = str(os.getenv("OPENAI_REALTIME_WS_URL") or "wss://api.openai.com/v1/realtime").strip()
SUGGESTION_MODEL = str(os.getenv("SUGGESTION_MODEL") or "gpt-4o").strip()
REALTIME_MODEL = str(os.getenv("REALTIME_MODEL") or "gpt-4o-realtime-preview").strip()

SUGGESTION_TIMEOUT_SEC = max(1.0, float(os.getenv("SUGGESTION_TIMEOUT_SEC", "15")))
SUGGESTION_COOLDOWN_SEC = max(0.0, float(os.getenv("SUGGESTION_COOLDOWN_SEC", "5.0")))
REALTIME_CONNECT_TIMEOUT_SEC = max(1.0, float(os.getenv("REALTIME_CONNECT_TIMEOUT_SEC", "10")))
MAX_AUDIO_CHUNK_BYTES = max(1024, int(os.getenv("MAX_AUDIO_CHUNK_BYTES", "65536")))
EVENT_QUEUE_MAX = max(8, int(os.getenv("EVENT_QUEUE_MAX", "256")))
WS_MAX_TEXT_BYTES = max(1024, int(os.getenv("WS_MAX_TEXT_BYTES", "262144")))
SESSION_CLEANUP_TTL_SEC = max(60.0, float(os.getenv("SESSION_CLEANUP_TTL_SEC", "1800")))
SESSION_CLEANUP_INTERVAL_SEC = max(10.0, float(os.getenv("SESSION_CLEANUP_INTERVAL_SEC", "60")))
CORS_ALLOW_ORIGINS = str(os.getenv("CORS_ALLOW_ORIGINS") or "").strip()

USE_REDIS_SESSION_STORE = _env_flag("USE_REDIS_SESSION_STORE")
REDIS_URL = str(os.getenv("REDIS_URL") or "").strip()
