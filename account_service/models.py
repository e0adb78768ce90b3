# account_service/models.py
import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Index
from sqlalchemy import Enum as SAEnum

from .database import Base, utcnow


class Currency(str, enum.Enum):
    NGN = "NGN"
    USD = "USD"


class Role(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class OTPPurpose(str, enum.Enum):
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# --- Database Model: User ---
class User(Base):
    __tablename__ = "users"

    user_id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    full_name = Column(String(100), nullable=False)
    phone_number = Column(String(20), unique=True, index=True, nullable=False)
    profile_image_url = Column(String(500), nullable=True)
    preferred_currency = Column(
        SAEnum(Currency, values_callable=_enum_values, name="currency"),
        nullable=False,
    )
    role = Column(
        SAEnum(Role, values_callable=_enum_values, name="user_role"),
        nullable=False,
        default=Role.USER,
    )
    date_registered = Column(DateTime, nullable=False, default=utcnow)
    last_login = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    balance_visibility_default = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<User {self.user_id} {self.email}>"


# --- Database Model: one-time codes ---
class OTPCode(Base):
    __tablename__ = "otp_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False)
    code = Column(String(6), nullable=False)
    purpose = Column(
        SAEnum(OTPPurpose, values_callable=_enum_values, name="otp_purpose"),
        nullable=False,
    )
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    is_used = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_otp_codes_email_purpose_used", "email", "purpose", "is_used"),
    )
