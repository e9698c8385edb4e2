# file: app/config.py

import os
from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    return os.getenv(name, "1" if default else "0").lower() in {"1", "true", "yes", "on"}


# --- Database ---
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "fitremind")

if os.getenv("DATABASE_URL"):
    DATABASE_URL = os.getenv("DATABASE_URL")
elif DB_PASSWORD:
    DATABASE_URL = f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
else:
    # Local development and tests run without a Postgres server.
    DATABASE_URL = "sqlite+aiosqlite:///./fitremind.db"

# --- Firebase ---
FIREBASE_CREDENTIALS_PATH = os.getenv("FIREBASE_CREDENTIALS_PATH", "serviceAccountKey.json")

# --- Server sweep ---
SCHEDULER_ENABLED = _bool_env("SCHEDULER_ENABLED", True)
SWEEP_INTERVAL_SECONDS = max(_int_env("SWEEP_INTERVAL_SECONDS", 60), 5)
PUSH_TIMEOUT_SECONDS = _float_env("PUSH_TIMEOUT_SECONDS", 10.0)
REMINDER_TASK_TIMEOUT_SECONDS = _float_env("REMINDER_TASK_TIMEOUT_SECONDS", 30.0)

# --- Client fallback poller ---
CLIENT_POLL_INTERVAL_SECONDS = max(_int_env("CLIENT_POLL_INTERVAL_SECONDS", 30), 1)
PERMISSION_PROMPT_TIMEOUT_SECONDS = _float_env("PERMISSION_PROMPT_TIMEOUT_SECONDS", 60.0)

# --- Recurrence / display ---
REMINDER_TIMEZONE = os.getenv("REMINDER_TIMEZONE", "UTC")

# --- Push providers ---
EXPO_PUSH_URL = os.getenv("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")
