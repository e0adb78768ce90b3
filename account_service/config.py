# account_service/config.py
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

log = logging.getLogger(__name__)

SQLITE_FALLBACK_URL = "sqlite:///./db/accounts.db"


def _env_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(environ, name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


@dataclass
class Settings:
    """Runtime configuration, normally built with ``Settings.from_env()``."""

    jwt_secret: str
    refresh_token_secret: str
    jwt_expires_in: str = "7d"
    refresh_token_expires_in: str = "30d"

    database_url: str = SQLITE_FALLBACK_URL

    # Mail
    email_host: Optional[str] = None
    email_port: int = 587
    email_secure: bool = False
    email_user: Optional[str] = None
    email_password: Optional[str] = None
    email_from_name: str = "Account Service"
    email_from: Optional[str] = None
    sendgrid_api_key: Optional[str] = None

    # One-time codes
    otp_expire_minutes: int = 10
    otp_max_attempts: int = 5

    # HTTP
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    port: int = 8000
    log_level: str = "INFO"

    @property
    def mail_from_address(self) -> Optional[str]:
        return self.email_from or self.email_user

    @classmethod
    def from_env(cls, environ=None, dotenv: bool = True) -> "Settings":
        """Read settings from the process environment (and ``.env``).

        Both signing secrets are mandatory: there is no fallback secret,
        a missing one stops startup.
        """
        if dotenv:
            load_dotenv()
        env = os.environ if environ is None else environ

        jwt_secret = env.get("JWT_SECRET")
        refresh_secret = env.get("REFRESH_TOKEN_SECRET")
        if not jwt_secret:
            raise RuntimeError(
                "JWT_SECRET is not set. Please configure it in the environment."
            )
        if not refresh_secret:
            raise RuntimeError(
                "REFRESH_TOKEN_SECRET is not set. Please configure it in the environment."
            )
        if jwt_secret == refresh_secret:
            log.warning("JWT_SECRET and REFRESH_TOKEN_SECRET are identical")

        database_url = env.get("DATABASE_URL")
        if not database_url:
            database_url = SQLITE_FALLBACK_URL
            log.warning("DATABASE_URL not set, using SQLite fallback: %s", database_url)

        origins = env.get("CORS_ORIGINS") or "*"

        return cls(
            jwt_secret=jwt_secret,
            refresh_token_secret=refresh_secret,
            jwt_expires_in=env.get("JWT_EXPIRES_IN") or "7d",
            refresh_token_expires_in=env.get("REFRESH_TOKEN_EXPIRES_IN") or "30d",
            database_url=database_url,
            email_host=env.get("EMAIL_HOST") or None,
            email_port=_env_int(env, "EMAIL_PORT", 587),
            email_secure=_env_bool(env.get("EMAIL_SECURE")),
            email_user=env.get("EMAIL_USER") or None,
            email_password=env.get("EMAIL_PASSWORD") or None,
            email_from_name=env.get("EMAIL_FROM_NAME") or "Account Service",
            email_from=env.get("EMAIL_FROM") or None,
            sendgrid_api_key=env.get("SENDGRID_API_KEY") or None,
            otp_expire_minutes=_env_int(env, "OTP_EXPIRE_MINUTES", 10),
            otp_max_attempts=_env_int(env, "OTP_MAX_ATTEMPTS", 5),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            port=_env_int(env, "PORT", 8000),
            log_level=env.get("LOG_LEVEL") or "INFO",
        )
