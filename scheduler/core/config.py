import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
DEBUG = _get_bool(os.getenv("DEBUG"), default=False)
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./scheduler.db")

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:3000"])

DEFAULT_SESSION_DURATION_MINUTES = int(os.getenv("DEFAULT_SESSION_DURATION_MINUTES", "60"))
MIN_SESSION_DURATION_MINUTES = int(os.getenv("MIN_SESSION_DURATION_MINUTES", "15"))
MAX_SESSION_DURATION_MINUTES = int(os.getenv("MAX_SESSION_DURATION_MINUTES", "180"))
SLOT_RANGE_DAYS = int(os.getenv("SLOT_RANGE_DAYS", "28"))
JOIN_EARLY_MINUTES = int(os.getenv("JOIN_EARLY_MINUTES", "5"))


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at a server database in production.")
    if MIN_SESSION_DURATION_MINUTES <= 0 or MIN_SESSION_DURATION_MINUTES > MAX_SESSION_DURATION_MINUTES:
        raise RuntimeError("Session duration limits are inconsistent.")
