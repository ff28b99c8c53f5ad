import os

from dotenv import load_dotenv

load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if APP_ENV != "production" else "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./reservations.db")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

# Canonical slot grid: 09:00 to 18:00 in 30 minute steps.
SLOT_DAY_START = os.getenv("SLOT_DAY_START", "09:00")
SLOT_DAY_END = os.getenv("SLOT_DAY_END", "18:00")
SLOT_INCREMENT_MINUTES = _get_int(os.getenv("SLOT_INCREMENT_MINUTES"), 30)

WEEK_STARTS_ON = os.getenv("WEEK_STARTS_ON", "sunday").strip().lower()

# "assignee" scopes conflicts per assignee when one is set, "global" ignores assignees.
SCOPE_MODE = os.getenv("SCOPE_MODE", "assignee").strip().lower()

# Empty means the host's local timezone.
SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "")

COMMIT_TIMEOUT_SECONDS = _get_float(os.getenv("COMMIT_TIMEOUT_SECONDS"), 5.0)
COMMIT_MAX_ATTEMPTS = _get_int(os.getenv("COMMIT_MAX_ATTEMPTS"), 3)

# Seconds a computed availability listing may be served from memory; 0 disables the cache.
AVAILABILITY_CACHE_SECONDS = _get_float(os.getenv("AVAILABILITY_CACHE_SECONDS"), 2.0)
AVAILABILITY_CACHE_SIZE = _get_int(os.getenv("AVAILABILITY_CACHE_SIZE"), 256)

ALLOW_HARD_DELETE_SCHEDULED = _get_bool(os.getenv("ALLOW_HARD_DELETE_SCHEDULED"), default=False)

PRESENCE_TIMEOUT_SECONDS = _get_float(os.getenv("PRESENCE_TIMEOUT_SECONDS"), 90.0)
PRESENCE_SWEEP_SECONDS = _get_float(os.getenv("PRESENCE_SWEEP_SECONDS"), 30.0)

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def week_start_index() -> int:
    return WEEKDAY_NAMES.index(WEEK_STARTS_ON)


def validate_runtime_config() -> None:
    if SCOPE_MODE not in {"assignee", "global"}:
        raise RuntimeError("SCOPE_MODE must be 'assignee' or 'global'.")
    if WEEK_STARTS_ON not in WEEKDAY_NAMES:
        raise RuntimeError(f"WEEK_STARTS_ON must be one of {', '.join(WEEKDAY_NAMES)}.")
    if SLOT_INCREMENT_MINUTES <= 0:
        raise RuntimeError("SLOT_INCREMENT_MINUTES must be positive.")
    if COMMIT_TIMEOUT_SECONDS <= 0:
        raise RuntimeError("COMMIT_TIMEOUT_SECONDS must be positive.")
    if COMMIT_MAX_ATTEMPTS < 1:
        raise RuntimeError("COMMIT_MAX_ATTEMPTS must be at least 1.")
    if AVAILABILITY_CACHE_SECONDS < 0:
        raise RuntimeError("AVAILABILITY_CACHE_SECONDS must not be negative.")
    if AVAILABILITY_CACHE_SIZE < 1:
        raise RuntimeError("AVAILABILITY_CACHE_SIZE must be at least 1.")
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at a server database in production.")
