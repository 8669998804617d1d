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
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./healthportal.db")

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:5173"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", str(7 * 24 * 60)))

SLOT_INCREMENT_MINUTES = int(os.getenv("SLOT_INCREMENT_MINUTES", "30"))
DEFAULT_APPOINTMENT_DURATION_MINUTES = int(os.getenv("DEFAULT_APPOINTMENT_DURATION_MINUTES", "30"))
# Upper bound used to narrow the candidate query window for conflict checks.
MAX_APPOINTMENT_DURATION_MINUTES = int(os.getenv("MAX_APPOINTMENT_DURATION_MINUTES", "240"))

BOOKING_ISOLATION_LEVEL = os.getenv("BOOKING_ISOLATION_LEVEL", "SERIALIZABLE")
BOOKING_MAX_ATTEMPTS = int(os.getenv("BOOKING_MAX_ATTEMPTS", "2"))
BOOKING_REQUIRE_PUBLISHED_SLOT = _get_bool(os.getenv("BOOKING_REQUIRE_PUBLISHED_SLOT"), default=False)

MAX_REASON_LENGTH = int(os.getenv("MAX_REASON_LENGTH", "500"))
MAX_NOTES_LENGTH = int(os.getenv("MAX_NOTES_LENGTH", "1000"))

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if BOOKING_MAX_ATTEMPTS < 1:
        raise RuntimeError("BOOKING_MAX_ATTEMPTS must be at least 1.")
    if SLOT_INCREMENT_MINUTES <= 0:
        raise RuntimeError("SLOT_INCREMENT_MINUTES must be positive.")
