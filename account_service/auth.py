# account_service/auth.py
"""Login, token refresh and the password change/reset flows.

Every flow returns a ``ServiceResult``. Business-rule rejections are plain
failures. An unexpected exception rolls back the session, is logged, and
comes back as a ``general`` failure; it is never raised to the caller.

The public methods are coroutines, but bcrypt and the session work are
blocking: that part of each flow runs in the threadpool and only the mail
sends are awaited on the event loop.
"""
import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from .mailer import Mailer
from .models import OTPPurpose
from .otp import OTPService
from .passwords import hash_password, verify_password
from .schemas import ServiceResult, TokenClaims
from .tokens import InvalidTokenError, TokenIssuer
from .users import UserStore, to_user_out

log = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

INVALID_CREDENTIALS = "Invalid email or password"
ACCOUNT_DEACTIVATED = "Account is deactivated"
FORGOT_PASSWORD_SENT = (
    "If an account exists with this email, a password reset OTP has been sent"
)

# (email, full_name) of the account a notification goes to
Recipient = Tuple[str, str]


def _claims_for(user) -> TokenClaims:
    return TokenClaims(user_id=user.user_id, email=user.email, role=user.role.value)


def _too_short(password: str) -> bool:
    return len(password) < MIN_PASSWORD_LENGTH


class AuthService:
    def __init__(
        self,
        db: Session,
        tokens: TokenIssuer,
        mailer: Mailer,
        otp: Optional[OTPService] = None,
        store: Optional[UserStore] = None,
    ):
        self.db = db
        self.tokens = tokens
        self.mailer = mailer
        self.otp = otp or OTPService(db)
        self.store = store or UserStore(db)

    def _internal_error(self, message: str, ex: Exception) -> ServiceResult:
        self.db.rollback()
        log.exception(message)
        return ServiceResult.internal_error(message, ex)

    # --- login / refresh ---
    async def login(self, email: str, password: str) -> ServiceResult:
        return await run_in_threadpool(self._login, email, password)

    def _login(self, email: str, password: str) -> ServiceResult:
        try:
            user = self.store.find_by_email(email)
            if user is None:
                return ServiceResult.fail(INVALID_CREDENTIALS, "credentials")

            if not user.is_active:
                return ServiceResult.fail(
                    ACCOUNT_DEACTIVATED,
                    "account",
                    "Account is deactivated. Please contact support.",
                )

            if not verify_password(password or "", user.password_hash):
                return ServiceResult.fail(INVALID_CREDENTIALS, "credentials")

            if self.store.update_last_login(user.user_id):
                self.db.commit()

            pair = self.tokens.generate(_claims_for(user))
            data = {"user": to_user_out(user)}
            data.update(pair.model_dump(by_alias=True))
            log.info("User %s logged in", user.user_id)
            return ServiceResult.ok("Login successful", data)
        except Exception as ex:
            return self._internal_error("An error occurred during login", ex)

    async def refresh(self, refresh_token: str) -> ServiceResult:
        try:
            claims = self.tokens.verify_refresh(refresh_token)
        except InvalidTokenError as ex:
            return ServiceResult.fail("Invalid refresh token", "token", str(ex))
        return await run_in_threadpool(self._refresh, claims)

    def _refresh(self, claims: TokenClaims) -> ServiceResult:
        try:
            user = self.store.find_by_id(claims.user_id)
            if user is None:
                return ServiceResult.fail("User not found", "user")
            if not user.is_active:
                return ServiceResult.fail("User account is inactive", "user")

            # the presented refresh token stays valid until it expires
            pair = self.tokens.generate(_claims_for(user))
            return ServiceResult.ok(
                "Token refreshed successfully", pair.model_dump(by_alias=True)
            )
        except Exception as ex:
            return self._internal_error("An error occurred while refreshing token", ex)

    # --- change password ---
    async def change_password(
        self, user_id: str, old_password: str, new_password: str
    ) -> ServiceResult:
        # input rules come first: nothing is read or written when they fail
        if not old_password or not new_password:
            return ServiceResult.fail(
                "Old password and new password are required", "password"
            )
        if _too_short(new_password):
            return ServiceResult.fail(
                "New password must be at least 8 characters long",
                "newPassword",
                "Password must be at least 8 characters long",
            )
        if old_password == new_password:
            return ServiceResult.fail(
                "New password must be different from old password", "newPassword"
            )

        failure, recipient = await run_in_threadpool(
            self._store_changed_password, user_id, old_password, new_password
        )
        if failure is not None:
            return failure

        # the change stands even if the notification fails
        if not await self.mailer.send_password_changed_email(*recipient):
            log.warning("Password changed email to user %s was not sent", user_id)
        return ServiceResult.ok("Password changed successfully")

    def _store_changed_password(
        self, user_id: str, old_password: str, new_password: str
    ) -> Tuple[Optional[ServiceResult], Optional[Recipient]]:
        try:
            user = self.store.find_by_id(user_id)
            if user is None:
                return ServiceResult.fail("User not found", "user"), None

            if not verify_password(old_password, user.password_hash):
                return ServiceResult.fail(
                    "Incorrect old password",
                    "oldPassword",
                    "The old password you entered is incorrect",
                ), None

            recipient = (user.email, user.full_name)
            self.store.update(user.user_id, {"password_hash": hash_password(new_password)})
            self.db.commit()
            log.info("Password changed for user %s", user_id)
            return None, recipient
        except Exception as ex:
            return self._internal_error("An error occurred while changing password", ex), None

    # --- forgot / verify / reset ---
    async def forgot_password(self, email: str) -> ServiceResult:
        if not email:
            return ServiceResult.fail("Email is required", "email")

        outcome, code = await run_in_threadpool(self._issue_reset_code, email)
        if code is None:
            return outcome

        if not await self.mailer.send_otp_email(outcome, code, self.otp.expire_minutes):
            return ServiceResult.fail(
                "Failed to send OTP email", "email", "Failed to send OTP. Please try again."
            )
        return ServiceResult.ok(FORGOT_PASSWORD_SENT)

    def _issue_reset_code(self, email: str):
        """Return ``(address, code)`` when a code was issued, otherwise
        ``(result, None)`` with the final answer."""
        try:
            user = self.store.find_by_email(email)

            # same answer whether or not the account exists
            if user is None:
                return ServiceResult.ok(FORGOT_PASSWORD_SENT), None

            if not user.is_active:
                return ServiceResult.fail(
                    ACCOUNT_DEACTIVATED,
                    "account",
                    "This account is deactivated. Please contact support.",
                ), None

            address = user.email
            code = self.otp.issue(address, OTPPurpose.PASSWORD_RESET)
            self.db.commit()
            return address, code
        except Exception as ex:
            return self._internal_error(
                "An error occurred while processing your request", ex
            ), None

    async def verify_otp(self, email: str, otp: str) -> ServiceResult:
        if not email or not otp:
            return ServiceResult.fail("Email and OTP are required", "otp")
        return await run_in_threadpool(self._verify_otp, email, otp)

    def _verify_otp(self, email: str, otp: str) -> ServiceResult:
        try:
            check = self.otp.verify(email, otp, OTPPurpose.PASSWORD_RESET)
            # persist the attempt count (or the deletion) either way
            self.db.commit()
        except Exception as ex:
            return self._internal_error("An error occurred while verifying OTP", ex)

        if not check.valid:
            return ServiceResult.fail(check.message, "otp")
        return ServiceResult.ok(check.message, {"verified": True})

    async def reset_password(
        self, email: str, otp: str, new_password: str
    ) -> ServiceResult:
        if not email or not otp or not new_password:
            return ServiceResult.fail(
                "Email, OTP, and new password are required",
                "input",
                "All fields are required",
            )
        if _too_short(new_password):
            return ServiceResult.fail(
                "New password must be at least 8 characters long",
                "newPassword",
                "Password must be at least 8 characters long",
            )

        failure, recipient = await run_in_threadpool(
            self._store_reset_password, email, otp, new_password
        )
        if failure is not None:
            return failure

        if not await self.mailer.send_password_changed_email(*recipient):
            log.warning("Password reset email to %s was not sent", recipient[0])
        return ServiceResult.ok("Password reset successfully")

    def _store_reset_password(
        self, email: str, otp: str, new_password: str
    ) -> Tuple[Optional[ServiceResult], Optional[Recipient]]:
        try:
            check = self.otp.verify(email, otp, OTPPurpose.PASSWORD_RESET)
            if not check.valid:
                self.db.commit()
                return ServiceResult.fail(check.message, "otp"), None

            user = self.store.find_by_email(email)
            if user is None:
                self.db.commit()
                return ServiceResult.fail(
                    "User not found", "email", "No account found with this email"
                ), None

            recipient = (user.email, user.full_name)
            # password write and code consumption commit together
            self.store.update(user.user_id, {"password_hash": hash_password(new_password)})
            self.otp.mark_used(email, otp, OTPPurpose.PASSWORD_RESET)
            self.db.commit()
            log.info("Password reset for user %s", user.user_id)
            return None, recipient
        except Exception as ex:
            return self._internal_error("An error occurred while resetting password", ex), None
