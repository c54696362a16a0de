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


def _get_int_set(value: str | None, default: frozenset[int]) -> frozenset[int]:
    if value is None or not value.strip():
        return default
    return frozenset(int(part) for part in value.split(",") if part.strip())


APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./teletherapy.db")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Session timing
ALLOWED_SESSION_DURATIONS = _get_int_set(os.getenv("ALLOWED_SESSION_DURATIONS"), frozenset({30, 60}))
PRICING_BASELINE_MINUTES = 30
JOIN_UNLOCK_MINUTES = _get_int(os.getenv("JOIN_UNLOCK_MINUTES"), 5)
COOLDOWN_BUFFER_MINUTES = _get_int(os.getenv("COOLDOWN_BUFFER_MINUTES"), 10)

# Reconciliation sweeper
SWEEPER_ENABLED = _get_bool(os.getenv("SWEEPER_ENABLED"), default=True)
SWEEP_INTERVAL_SECONDS = _get_int(os.getenv("SWEEP_INTERVAL_SECONDS"), 60)

# Simulated payment
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")
PAYMENT_METHOD = os.getenv("PAYMENT_METHOD", "fake_payment")

# Video rooms
MEETING_BASE_URL = os.getenv("MEETING_BASE_URL", "https://meet.jit.si").rstrip("/")
MEETING_ROOM_PREFIX = os.getenv("MEETING_ROOM_PREFIX", "zenmind")
DEFAULT_TEEN_AVATAR = os.getenv(
    "DEFAULT_TEEN_AVATAR",
    "https://api.dicebear.com/7.x/avataaars/svg?seed=teen",
)

# Email notifications (optional)
EMAIL_ENABLED = _get_bool(os.getenv("EMAIL_ENABLED"), default=False)
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = _get_int(os.getenv("SMTP_PORT"), 587)
SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_USE_TLS = _get_bool(os.getenv("SMTP_USE_TLS"), default=True)
EMAIL_FROM = os.getenv("EMAIL_FROM", SMTP_USERNAME or "no-reply@example.com")
NOTIFICATION_TIMEOUT_SECONDS = _get_int(os.getenv("NOTIFICATION_TIMEOUT_SECONDS"), 10)


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if not ALLOWED_SESSION_DURATIONS:
        raise RuntimeError("ALLOWED_SESSION_DURATIONS must list at least one duration.")
