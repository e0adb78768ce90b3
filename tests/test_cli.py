# tests/test_cli.py
import pytest
from conftest import registration

from account_service import cli
from account_service.database import init_db, make_engine, make_session_factory
from account_service.users import UserService


@pytest.fixture
def env(monkeypatch, tmp_path):
    url = f"sqlite:///{tmp_path / 'accounts.db'}"
    monkeypatch.setenv("JWT_SECRET", "access")
    monkeypatch.setenv("REFRESH_TOKEN_SECRET", "refresh")
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    return url


def test_create_superuser(env, capsys):
    engine = make_engine(env)
    init_db(engine)
    db = make_session_factory(engine)()
    UserService(db).create_user(registration())
    db.close()

    assert cli.main(["create-superuser", "--email", "ada@example.com"]) == 0
    assert "User promoted to admin" in capsys.readouterr().out

    db = make_session_factory(engine)()
    assert UserService(db).get_user_by_email("ada@example.com").role.value == "admin"
    db.close()
    engine.dispose()


def test_create_superuser_unknown_email(env):
    assert cli.main(["create-superuser", "--email", "nobody@example.com"]) == 1


def test_cleanup_otps(env, capsys):
    assert cli.main(["cleanup-otps"]) == 0
    assert "Removed 0 expired OTP record(s)." in capsys.readouterr().out


def test_missing_secret_fails_fast(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    monkeypatch.setenv("REFRESH_TOKEN_SECRET", "refresh")
    with pytest.raises(RuntimeError):
        cli.main(["cleanup-otps"])
