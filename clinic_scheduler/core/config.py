import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_float(value: str | None, default: float | None = None) -> float | None:
    if value is None or not value.strip():
        return default
    return float(value)

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic_scheduler.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:4200").split(",")
    if origin.strip()
]

DEFAULT_SLOT_DURATION_MINUTES = 30
MIN_SLOT_DURATION_MINUTES = 10
MAX_SLOT_DURATION_MINUTES = 120
DEFAULT_MAX_PATIENTS_PER_DAY = 20

LEDGER_MAX_RETRIES = int(os.getenv("LEDGER_MAX_RETRIES", "5"))
LEDGER_RETRY_BACKOFF_SECONDS = _get_float(os.getenv("LEDGER_RETRY_BACKOFF_SECONDS"), default=0.05)
ORPHAN_RESERVATION_GRACE_SECONDS = int(os.getenv("ORPHAN_RESERVATION_GRACE_SECONDS", "300"))

# Unset means callers get no deadline unless they pass one explicitly.
REQUEST_TIMEOUT_SECONDS = _get_float(os.getenv("REQUEST_TIMEOUT_SECONDS"))

NOTIFICATION_SERVICE_URL = os.getenv("NOTIFICATION_SERVICE_URL", "")
NOTIFICATION_TIMEOUT_SECONDS = _get_float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS"), default=5.0)
NOTIFICATION_WORKERS = int(os.getenv("NOTIFICATION_WORKERS", "4"))

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if LEDGER_MAX_RETRIES < 1:
        raise RuntimeError("LEDGER_MAX_RETRIES must be at least 1.")
