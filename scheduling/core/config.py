import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid float for {name}: {raw!r}") from None


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./scheduling.db")

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:4200").split(",")
    if origin.strip()
]

SLOT_DURATION_MINUTES = _get_int("SLOT_DURATION_MINUTES", 60)
CLAIM_GRANULARITY_MINUTES = _get_int("CLAIM_GRANULARITY_MINUTES", 15)
BOOKING_HORIZON_DAYS = _get_int("BOOKING_HORIZON_DAYS", 90)

CANCELLATION_FREE_WINDOW_HOURS = _get_float("CANCELLATION_FREE_WINDOW_HOURS", 48.0)
LATE_CANCELLATION_PENALTY = _get_float("LATE_CANCELLATION_PENALTY", 0.5)

JOIN_WINDOW_LEAD_MINUTES = _get_int("JOIN_WINDOW_LEAD_MINUTES", 15)

NO_SHOW_SUSPENSION_THRESHOLD = _get_int("NO_SHOW_SUSPENSION_THRESHOLD", 3)
COMPLETION_GRACE_HOURS = _get_float("COMPLETION_GRACE_HOURS", 48.0)

BOOKING_COMMIT_TIMEOUT_SECONDS = _get_float("BOOKING_COMMIT_TIMEOUT_SECONDS", 5.0)

SESSION_PIN_TTL_HOURS = _get_float("SESSION_PIN_TTL_HOURS", 2.0)
SESSION_PIN_MAX_ATTEMPTS = _get_int("SESSION_PIN_MAX_ATTEMPTS", 3)
SESSION_PIN_LOCK_MINUTES = _get_int("SESSION_PIN_LOCK_MINUTES", 10)

MAX_NOTE_LENGTH = _get_int("MAX_NOTE_LENGTH", 600)


def validate_runtime_config() -> None:
    if SLOT_DURATION_MINUTES <= 0:
        raise RuntimeError("SLOT_DURATION_MINUTES must be positive.")
    if CLAIM_GRANULARITY_MINUTES <= 0 or SLOT_DURATION_MINUTES % CLAIM_GRANULARITY_MINUTES != 0:
        raise RuntimeError("CLAIM_GRANULARITY_MINUTES must evenly divide SLOT_DURATION_MINUTES.")
    if not 0.0 <= LATE_CANCELLATION_PENALTY <= 1.0:
        raise RuntimeError("LATE_CANCELLATION_PENALTY must be between 0 and 1.")
    if NO_SHOW_SUSPENSION_THRESHOLD < 1:
        raise RuntimeError("NO_SHOW_SUSPENSION_THRESHOLD must be >= 1.")
    if BOOKING_COMMIT_TIMEOUT_SECONDS <= 0:
        raise RuntimeError("BOOKING_COMMIT_TIMEOUT_SECONDS must be positive.")
    if SESSION_PIN_MAX_ATTEMPTS < 1:
        raise RuntimeError("SESSION_PIN_MAX_ATTEMPTS must be >= 1.")
