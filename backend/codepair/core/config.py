import os
from pathlib import Path
from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[2]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)

_TRUTHY = {"1", "true", "yes", "on"}


def env_flag(name: str, default: str = "false") -> bool:
    return str(os.getenv(name, default)).strip().lower() in _TRUTHY


ENVIRONMENT = str(os.getenv("ENV") or "development").strip().lower()

# Editor sync
CODE_SYNC_DEBOUNCE_MS = max(50, int(os.getenv("CODE_SYNC_DEBOUNCE_MS", "300")))
CODE_SYNC_PROTECTION_MS = max(100, int(os.getenv("CODE_SYNC_PROTECTION_MS", "500")))
CODE_UPDATE_REQUIRE_PARTICIPANT = env_flag("CODE_UPDATE_REQUIRE_PARTICIPANT")

# Missed session sweep (0 disables the background loop)
MISSED_SWEEP_INTERVAL_SEC = max(0, int(os.getenv("MISSED_SWEEP_INTERVAL_SEC", "60")))

# Storage
USE_REDIS_SESSION_STORE = env_flag("USE_REDIS_SESSION_STORE")
REDIS_URL = str(os.getenv("REDIS_URL") or "").strip()
QUESTION_STORE_PATH = str(os.getenv("QUESTION_STORE_PATH") or "").strip()
SEED_DEFAULT_QUESTIONS = env_flag("SEED_DEFAULT_QUESTIONS", "true")

# Live channel
WS_MAX_TEXT_BYTES = max(1024, int(os.getenv("WS_MAX_TEXT_BYTES", "262144")))
WS_HEARTBEAT_INTERVAL_SEC = max(5.0, float(os.getenv("WS_HEARTBEAT_INTERVAL_SEC", "25")))
CONNECTION_CLEANUP_TTL_SEC = max(60, int(os.getenv("CONNECTION_CLEANUP_TTL_SEC", "1800")))

# Identity
IDENTITY_JWT_SECRET = str(os.getenv("IDENTITY_JWT_SECRET") or "").strip()
IDENTITY_VERIFY_URL = str(os.getenv("IDENTITY_VERIFY_URL") or "").strip()
IDENTITY_API_KEY = str(os.getenv("IDENTITY_API_KEY") or "").strip()
ALLOW_UNVERIFIED_JWT_DEV = env_flag("ALLOW_UNVERIFIED_JWT_DEV")

# HTTP surface
CORS_ALLOW_ORIGINS = str(os.getenv("CORS_ALLOW_ORIGINS") or "").strip()
RATE_LIMIT_ENABLED = env_flag("RATE_LIMIT_ENABLED", "true")
RATE_LIMIT_WINDOW_SEC = max(10, int(os.getenv("RATE_LIMIT_WINDOW_SEC", "60")))
RATE_LIMIT_MAX_REQUESTS = max(20, int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "300")))
CONNECTION_CLEANUP_INTERVAL_SEC = max(30, int(os.getenv("CONNECTION_CLEANUP_INTERVAL_SEC", "120")))
