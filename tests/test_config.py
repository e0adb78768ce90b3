# tests/test_config.py
import pytest

from account_service.config import SQLITE_FALLBACK_URL, Settings

BASE_ENV = {"JWT_SECRET": "access", "REFRESH_TOKEN_SECRET": "refresh"}


def _env(**extra):
    env = dict(BASE_ENV)
    env.update(extra)
    return env


@pytest.mark.parametrize("missing", ["JWT_SECRET", "REFRESH_TOKEN_SECRET"])
def test_missing_secret_stops_startup(missing):
    env = _env()
    del env[missing]
    with pytest.raises(RuntimeError, match=missing):
        Settings.from_env(environ=env, dotenv=False)


def test_empty_secret_counts_as_missing():
    with pytest.raises(RuntimeError):
        Settings.from_env(environ=_env(JWT_SECRET=""), dotenv=False)


def test_defaults():
    settings = Settings.from_env(environ=_env(), dotenv=False)
    assert settings.database_url == SQLITE_FALLBACK_URL
    assert settings.jwt_expires_in == "7d"
    assert settings.refresh_token_expires_in == "30d"
    assert settings.otp_expire_minutes == 10
    assert settings.otp_max_attempts == 5
    assert settings.email_port == 587
    assert settings.email_secure is False
    assert settings.cors_origins == ["*"]
    assert settings.mail_from_address is None


def test_values_from_environment():
    settings = Settings.from_env(
        environ=_env(
            DATABASE_URL="postgresql://u:p@db/accounts",
            EMAIL_HOST="smtp.example.com",
            EMAIL_PORT="465",
            EMAIL_SECURE="true",
            EMAIL_USER="mailer@example.com",
            OTP_EXPIRE_MINUTES="15",
            CORS_ORIGINS="https://a.example.com, https://b.example.com",
            PORT="9000",
        ),
        dotenv=False,
    )
    assert settings.database_url == "postgresql://u:p@db/accounts"
    assert settings.email_port == 465
    assert settings.email_secure is True
    assert settings.mail_from_address == "mailer@example.com"
    assert settings.otp_expire_minutes == 15
    assert settings.cors_origins == ["https://a.example.com", "https://b.example.com"]
    assert settings.port == 9000


def test_email_from_overrides_user():
    settings = Settings.from_env(
        environ=_env(EMAIL_USER="mailer@example.com", EMAIL_FROM="hello@example.com"),
        dotenv=False,
    )
    assert settings.mail_from_address == "hello@example.com"


def test_bad_integer_is_reported():
    with pytest.raises(RuntimeError, match="EMAIL_PORT"):
        Settings.from_env(environ=_env(EMAIL_PORT="abc"), dotenv=False)
