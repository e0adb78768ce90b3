# account_service/cli.py
import argparse
import sys

from .config import Settings
from .database import init_db, make_engine, make_session_factory
from .logger import setup_logging
from .otp import OTPService
from .users import UserService


def _session(settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    return make_session_factory(engine)()


def serve(args, settings):
    import uvicorn

    from .app import create_app

    app = create_app(settings)
    uvicorn.run(app, host=args.host, port=args.port or settings.port)
    return 0


def cleanup_otps(args, settings):
    db = _session(settings)
    try:
        deleted = OTPService(db).cleanup_expired()
        db.commit()
    finally:
        db.close()
    print(f"Removed {deleted} expired OTP record(s).")
    return 0


def create_superuser(args, settings):
    db = _session(settings)
    try:
        result = UserService(db).promote_to_admin(args.email)
    finally:
        db.close()
    print(result.message)
    return 0 if result.success else 1


def main(argv=None):
    parser = argparse.ArgumentParser(prog="account-service")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="run the HTTP API")
    p_serve.add_argument("--host", type=str, default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=None)
    p_serve.set_defaults(func=serve)

    p_cleanup = sub.add_parser("cleanup-otps", help="delete expired one-time codes")
    p_cleanup.set_defaults(func=cleanup_otps)

    p_admin = sub.add_parser("create-superuser", help="give an existing user the admin role")
    p_admin.add_argument("--email", type=str, required=True)
    p_admin.set_defaults(func=create_superuser)

    args = parser.parse_args(argv)
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    return args.func(args, settings)


if __name__ == "__main__":
    sys.exit(main())
