# account_service/otp.py
"""Short-lived numeric codes proving control of an email address.

At most one unused code exists per (email, purpose). Issuing a new one
replaces the old one in the same transaction. Callers own the commit; this
module only flushes.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .database import utcnow
from .models import OTPCode, OTPPurpose

log = logging.getLogger(__name__)

OTP_EXPIRE_MINUTES = 10
OTP_MAX_ATTEMPTS = 5
OTP_LOW = 100000
OTP_HIGH = 999999

INVALID_OTP = "Invalid OTP"
EXPIRED_OTP = "OTP has expired"
TOO_MANY_ATTEMPTS = "Too many attempts. Please request a new OTP"
OTP_VERIFIED = "OTP verified successfully"


@dataclass
class OTPVerification:
    valid: bool
    message: str


def generate_otp() -> str:
    """Six digits, uniform over [100000, 999999], from the OS CSPRNG."""
    return str(OTP_LOW + secrets.randbelow(OTP_HIGH - OTP_LOW + 1))


class OTPService:
    def __init__(
        self,
        db: Session,
        expire_minutes: int = OTP_EXPIRE_MINUTES,
        max_attempts: int = OTP_MAX_ATTEMPTS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.expire_minutes = expire_minutes
        self.max_attempts = max_attempts
        self.clock = clock or utcnow

    def _unused(self, email: str, purpose: OTPPurpose):
        return self.db.query(OTPCode).filter(
            OTPCode.email == email.strip().lower(),
            OTPCode.purpose == OTPPurpose(purpose),
            OTPCode.is_used.is_(False),
        )

    def issue(self, email: str, purpose: OTPPurpose = OTPPurpose.PASSWORD_RESET) -> str:
        code = generate_otp()
        now = self.clock()

        replaced = self._unused(email, purpose).delete(synchronize_session=False)
        if replaced:
            log.debug("Replaced %d unused %s code(s)", replaced, OTPPurpose(purpose).value)

        self.db.add(
            OTPCode(
                email=email.strip().lower(),
                code=code,
                purpose=OTPPurpose(purpose),
                created_at=now,
                expires_at=now + timedelta(minutes=self.expire_minutes),
                attempts=0,
                is_used=False,
            )
        )
        self.db.flush()
        return code

    def verify(
        self, email: str, code: str, purpose: OTPPurpose = OTPPurpose.PASSWORD_RESET
    ) -> OTPVerification:
        """Check ``code`` against the live record for (email, purpose).

        Every call that finds a live record costs one attempt, whether the
        code matches or not: the record is looked up by (email, purpose)
        only, so wrong guesses spend the same budget as correct ones.
        """
        record = self._unused(email, purpose).order_by(OTPCode.created_at.desc()).first()
        if record is None:
            return OTPVerification(False, INVALID_OTP)

        if self.clock() >= record.expires_at:
            self.db.delete(record)
            self.db.flush()
            return OTPVerification(False, EXPIRED_OTP)

        if record.attempts >= self.max_attempts:
            self.db.delete(record)
            self.db.flush()
            return OTPVerification(False, TOO_MANY_ATTEMPTS)

        record.attempts = OTPCode.attempts + 1
        self.db.flush()

        if not secrets.compare_digest(str(code or "").strip(), record.code):
            return OTPVerification(False, INVALID_OTP)
        return OTPVerification(True, OTP_VERIFIED)

    def mark_used(
        self, email: str, code: str, purpose: OTPPurpose = OTPPurpose.PASSWORD_RESET
    ) -> None:
        record = (
            self._unused(email, purpose)
            .filter(OTPCode.code == str(code or "").strip())
            .first()
        )
        if record is None:
            return
        record.is_used = True
        self.db.flush()

    def cleanup_expired(self) -> int:
        """Delete every code past its expiry, any purpose, used or not."""
        deleted = (
            self.db.query(OTPCode)
            .filter(OTPCode.expires_at < self.clock())
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return deleted
