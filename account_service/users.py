# account_service/users.py
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .database import utcnow
from .models import Role, User
from .passwords import hash_password
from .schemas import (
    ServiceResult,
    UserOut,
    validate_registration,
    validate_user_update,
)

log = logging.getLogger(__name__)

# Fields a profile update may never touch
PROTECTED_FIELDS = ("user_id", "password_hash", "date_registered", "role", "is_active")

# Error field of a lookup by id that found nothing; the HTTP layer maps it to 404
USER_NOT_FOUND_FIELD = "userId"


class UserStore:
    """Persistence surface for identity records.

    The store does not enforce business rules: callers check email/phone
    uniqueness before ``create``. The unique indexes on ``users`` catch the
    race between that check and the insert.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(self, values: Dict[str, Any]) -> User:
        user = User(
            is_active=True,
            balance_visibility_default=True,
            role=Role.USER,
            date_registered=utcnow(),
            last_login=None,
            **values,
        )
        self.db.add(user)
        self.db.flush()
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        if not email:
            return None
        return (
            self.db.query(User)
            .filter(User.email == email.strip().lower())
            .first()
        )

    def find_by_phone(self, phone_number: str) -> Optional[User]:
        if not phone_number:
            return None
        return self.db.query(User).filter(User.phone_number == phone_number).first()

    def find_by_id(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        return self.db.get(User, user_id)

    def list_users(self) -> List[User]:
        return self.db.query(User).order_by(User.date_registered.desc()).all()

    def update_last_login(self, user_id: str) -> bool:
        """Best effort: a failure is logged, never raised."""
        try:
            updated = (
                self.db.query(User)
                .filter(User.user_id == user_id)
                .update({User.last_login: utcnow()}, synchronize_session="fetch")
            )
            self.db.flush()
            return bool(updated)
        except SQLAlchemyError as ex:
            self.db.rollback()
            log.error("Error updating last login for %s: %s", user_id, ex)
            return False

    def update(self, user_id: str, values: Dict[str, Any]) -> Optional[User]:
        user = self.find_by_id(user_id)
        if user is None:
            return None
        for key, value in values.items():
            setattr(user, key, value)
        self.db.flush()
        return user

    def soft_delete(self, user_id: str) -> bool:
        user = self.find_by_id(user_id)
        if user is None:
            return False
        user.is_active = False
        self.db.flush()
        return True


def to_user_out(user: User) -> Dict[str, Any]:
    """JSON-ready outward projection of a user (no password hash)."""
    return UserOut.model_validate(user).model_dump(mode="json")


def _conflict_for(ex: IntegrityError) -> ServiceResult:
    text = str(ex.orig).lower() if ex.orig is not None else str(ex).lower()
    if "phone" in text:
        return ServiceResult.fail(
            "Phone number already exists", "phone_number", "Phone number is already registered"
        )
    return ServiceResult.fail(
        "User already exists", "email", "Email address is already registered"
    )


class UserService:
    def __init__(self, db: Session, store: Optional[UserStore] = None):
        self.db = db
        self.store = store or UserStore(db)

    def create_user(self, raw: Any) -> ServiceResult:
        data, errors = validate_registration(raw)
        if errors:
            return ServiceResult.invalid("Validation failed", errors)

        try:
            if self.store.find_by_email(data.email):
                return ServiceResult.fail(
                    "User already exists", "email", "Email address is already registered"
                )
            if self.store.find_by_phone(data.phone_number):
                return ServiceResult.fail(
                    "Phone number already exists",
                    "phone_number",
                    "Phone number is already registered",
                )

            user = self.store.create(
                {
                    "email": data.email,
                    "password_hash": hash_password(data.password),
                    "full_name": data.full_name,
                    "phone_number": data.phone_number,
                    "profile_image_url": data.profile_image_url,
                    "preferred_currency": data.preferred_currency,
                }
            )
            self.db.commit()
            log.info("Created user %s", user.user_id)
            return ServiceResult.ok("User created successfully", to_user_out(user))
        except IntegrityError as ex:
            # lost the race against a concurrent registration
            self.db.rollback()
            log.warning("Unique constraint hit while creating user: %s", ex.orig)
            return _conflict_for(ex)
        except Exception as ex:
            self.db.rollback()
            log.exception("Error in create_user")
            return ServiceResult.internal_error("Internal server error", ex)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.store.find_by_email(email)

    def get_user_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        user = self.store.find_by_id(user_id)
        return to_user_out(user) if user else None

    def list_users(self) -> List[Dict[str, Any]]:
        return [to_user_out(user) for user in self.store.list_users()]

    def update_last_login(self, user_id: str) -> bool:
        updated = self.store.update_last_login(user_id)
        if updated:
            self.db.commit()
        return updated

    def update_user(self, user_id: str, raw: Any) -> ServiceResult:
        if isinstance(raw, dict):
            raw = {k: v for k, v in raw.items() if k not in PROTECTED_FIELDS}
        values, errors = validate_user_update(raw)
        if errors:
            return ServiceResult.invalid("Validation failed", errors)
        if not values:
            return ServiceResult.fail(
                "No valid fields to update",
                "body",
                "Please provide at least one field to update",
            )

        try:
            existing = self.store.find_by_id(user_id)
            if existing is None:
                return ServiceResult.fail(
                    "User not found", USER_NOT_FOUND_FIELD, "No user exists with the provided ID"
                )

            if values.get("email"):
                other = self.store.find_by_email(values["email"])
                if other and other.user_id != user_id:
                    return ServiceResult.fail(
                        "Email already exists",
                        "email",
                        "Email address is already registered to another user",
                    )

            if values.get("phone_number"):
                other = self.store.find_by_phone(values["phone_number"])
                if other and other.user_id != user_id:
                    return ServiceResult.fail(
                        "Phone number already exists",
                        "phone_number",
                        "Phone number is already registered to another user",
                    )

            user = self.store.update(user_id, values)
            self.db.commit()
            return ServiceResult.ok("User updated successfully", to_user_out(user))
        except IntegrityError as ex:
            self.db.rollback()
            return _conflict_for(ex)
        except Exception as ex:
            self.db.rollback()
            log.exception("Error in update_user")
            return ServiceResult.internal_error("Internal server error", ex)

    def soft_delete_user(self, user_id: str) -> ServiceResult:
        try:
            existing = self.store.find_by_id(user_id)
            if existing is None:
                return ServiceResult.fail(
                    "User not found", USER_NOT_FOUND_FIELD, "No user exists with the provided ID"
                )
            if not existing.is_active:
                return ServiceResult.fail(
                    "User already deactivated",
                    "is_active",
                    "This user account is already deactivated",
                )

            self.store.soft_delete(user_id)
            self.db.commit()
            log.info("Deactivated user %s", user_id)
            return ServiceResult.ok("User deactivated successfully")
        except Exception as ex:
            self.db.rollback()
            log.exception("Error in soft_delete_user")
            return ServiceResult.internal_error("Internal server error", ex)

    def promote_to_admin(self, email: str) -> ServiceResult:
        user = self.store.find_by_email(email)
        if user is None:
            return ServiceResult.fail(
                "User not found", "email", "No user exists with the provided email"
            )
        user.role = Role.ADMIN
        self.db.commit()
        return ServiceResult.ok("User promoted to admin", to_user_out(user))
