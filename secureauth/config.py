import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(override=True)


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw_value = os.getenv(name, default)
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


def _store_backend() -> str:
    backend = os.getenv("STORE_BACKEND")
    if backend:
        return backend.strip().lower()
    # USE_IN_MEMORY=false is the older switch for the database backend.
    return "memory" if _env_bool("USE_IN_MEMORY", True) else "database"


@dataclass(frozen=True)
class Settings:
    otp_length: int = int(os.getenv("OTP_LENGTH", "6"))
    otp_ttl_minutes: int = int(os.getenv("OTP_EXPIRY_MINUTES", "10"))
    otp_max_attempts: int = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
    otp_resend_cooldown_seconds: int = int(
        os.getenv("OTP_RESEND_COOLDOWN_SECONDS", "60")
    )
    otp_debug: bool = _env_bool("OTP_DEBUG", False)
    session_ttl_hours: int = int(os.getenv("SESSION_EXPIRY_HOURS", "24"))
    user_provisioning: str = os.getenv("USER_PROVISIONING", "on_request").strip().lower()
    store_backend: str = _store_backend()
    database_url: str = os.getenv("DATABASE_URL", "")
    cleanup_interval_seconds: int = int(os.getenv("CLEANUP_INTERVAL_SECONDS", "300"))
    email_transport: str = os.getenv("EMAIL_TRANSPORT", "console").strip().lower()
    otp_email_sender: str = (
        os.getenv("OTP_EMAIL_SENDER")
        or os.getenv("SMTP_FROM")
        or "noreply@secureauth.com"
    )
    otp_email_subject: str = os.getenv("OTP_EMAIL_SUBJECT", "Your SecureAuth OTP")
    session_email_subject: str = os.getenv(
        "SESSION_EMAIL_SUBJECT", "Session Created - SecureAuth"
    )
    gmail_token_file: str = os.getenv("GMAIL_TOKEN_FILE", "")
    gmail_credentials_file: str = os.getenv("GMAIL_CREDENTIALS_FILE", "")
    smtp_host: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_user: str = os.getenv("SMTP_USER", "")
    smtp_password: str = os.getenv("SMTP_PASSWORD", "")
    smtp_timeout_seconds: float = float(os.getenv("SMTP_TIMEOUT_SECONDS", "20"))
    cors_origins: tuple[str, ...] = _env_list("CORS_ORIGIN", "http://localhost:5173")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()


settings = Settings()
