import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: str) -> list[str]:
    raw = value if value is not None else default
    return [item.strip() for item in raw.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking_engine.db")

BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "UTC")
WORKDAY_START_HOUR = int(os.getenv("WORKDAY_START_HOUR", "9"))
WORKDAY_END_HOUR = int(os.getenv("WORKDAY_END_HOUR", "17"))
DEFAULT_SLOT_DURATION_MINUTES = int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES", "30"))
MAX_NOTES_LENGTH = int(os.getenv("MAX_NOTES_LENGTH", "2000"))

EXTERNAL_CALENDAR_TIMEOUT_SECONDS = float(os.getenv("EXTERNAL_CALENDAR_TIMEOUT_SECONDS", "3.0"))
LEDGER_MAX_RETRIES = int(os.getenv("LEDGER_MAX_RETRIES", "3"))
LEDGER_RETRY_BASE_DELAY_SECONDS = float(os.getenv("LEDGER_RETRY_BASE_DELAY_SECONDS", "0.05"))
MIRROR_WORKERS = int(os.getenv("MIRROR_WORKERS", "1"))

CALENDAR_PROVIDER = os.getenv("CALENDAR_PROVIDER", "none").strip().lower()
SUPPORTED_CALENDAR_PROVIDERS = {"none", "google"}
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_CALENDAR_TIMEZONE = os.getenv("GOOGLE_CALENDAR_TIMEZONE", BUSINESS_TIMEZONE)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), "http://localhost:4200")

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if CALENDAR_PROVIDER not in SUPPORTED_CALENDAR_PROVIDERS:
        raise RuntimeError(f"Unsupported CALENDAR_PROVIDER: {CALENDAR_PROVIDER}")
    if not 0 <= WORKDAY_START_HOUR < WORKDAY_END_HOUR <= 23:
        raise RuntimeError("WORKDAY_START_HOUR must be before WORKDAY_END_HOUR.")
