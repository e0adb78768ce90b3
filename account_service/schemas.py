# account_service/schemas.py
import re
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from email_validator import EmailNotValidError, validate_email
from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
)
from pydantic.alias_generators import to_camel

from .models import Currency, Role

# Field name used for unexpected (non business-rule) failures
INTERNAL_ERROR_FIELD = "general"


# --- Result envelopes ---
class FieldError(BaseModel):
    field: str
    message: str


class ServiceResult(BaseModel):
    """Envelope returned by every service operation.

    ``errors`` is only populated when ``success`` is False.
    """

    success: bool
    message: str
    errors: Optional[List[FieldError]] = None
    data: Any = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> "ServiceResult":
        return cls(success=True, message=message, errors=None, data=data)

    @classmethod
    def fail(cls, message: str, field: str, detail: Optional[str] = None) -> "ServiceResult":
        return cls(
            success=False,
            message=message,
            errors=[FieldError(field=field, message=detail or message)],
            data=None,
        )

    @classmethod
    def invalid(cls, message: str, errors: List[FieldError]) -> "ServiceResult":
        return cls(success=False, message=message, errors=list(errors), data=None)

    @classmethod
    def internal_error(cls, message: str, exc: BaseException) -> "ServiceResult":
        return cls.fail(message, INTERNAL_ERROR_FIELD, str(exc) or type(exc).__name__)

    @property
    def is_internal_error(self) -> bool:
        return bool(self.errors) and self.errors[0].field == INTERNAL_ERROR_FIELD

    @property
    def first_error(self) -> Optional[str]:
        return self.errors[0].message if self.errors else None


class ApiResponse(BaseModel):
    """The HTTP envelope: one error string instead of a list."""

    success: bool
    message: str
    error: Optional[str] = None
    data: Any = None


# --- User projections ---
class UserOut(BaseModel):
    """Outward view of a user. Never carries the password hash."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    email: str
    full_name: str
    phone_number: str
    profile_image_url: Optional[str] = None
    preferred_currency: Currency
    role: Role
    date_registered: datetime
    last_login: Optional[datetime] = None
    is_active: bool
    balance_visibility_default: bool


# --- Tokens ---
class TokenClaims(BaseModel):
    user_id: str
    email: str
    role: str


class TokenPair(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    access_token: str
    refresh_token: str


# --- Request bodies ---
# Fields are optional so the services can report missing values with their
# own messages instead of a generic schema error.
class _CamelBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginRequest(_CamelBody):
    email: Optional[str] = None
    password: Optional[str] = None


class RefreshRequest(_CamelBody):
    refresh_token: Optional[str] = None


class ChangePasswordRequest(_CamelBody):
    old_password: Optional[str] = None
    new_password: Optional[str] = None


class ForgotPasswordRequest(_CamelBody):
    email: Optional[str] = None


class VerifyOTPRequest(_CamelBody):
    email: Optional[str] = None
    otp: Optional[str] = None


class ResetPasswordRequest(_CamelBody):
    email: Optional[str] = None
    otp: Optional[str] = None
    new_password: Optional[str] = None


# --- Registration / profile validation ---
PASSWORD_SPECIALS = r"!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?"
PASSWORD_PATTERN = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[" + PASSWORD_SPECIALS + r"])"
    r"[A-Za-z\d" + PASSWORD_SPECIALS + r"]+$"
)
FULL_NAME_PATTERN = re.compile(r"^[a-zA-Z\s'-]+$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{7,14}$")
PHONE_SEPARATORS = re.compile(r"[\s\-().]")
IMAGE_EXTENSION_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|webp|svg)$", re.IGNORECASE)

REQUIRED_MESSAGES = {
    "email": "Email is required",
    "password": "Password is required",
    "full_name": "Full name is required",
    "phone_number": "Phone number is required",
    "preferred_currency": "Preferred currency is required",
}


def _require_str(value, field: str) -> str:
    if value is None:
        raise ValueError(REQUIRED_MESSAGES[field])
    if not isinstance(value, str):
        raise ValueError(f"{REQUIRED_MESSAGES[field].split(' is ')[0]} must be a string")
    return value


def clean_email(value) -> str:
    value = _require_str(value, "email").strip().lower()
    if not value:
        raise ValueError("Email is required")
    if len(value) > 255:
        raise ValueError("Email must not exceed 255 characters")
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        raise ValueError("Invalid email format")
    return value


def check_password(value) -> str:
    value = _require_str(value, "password")
    if not value:
        raise ValueError("Password is required")
    if len(value) < 8:
        raise ValueError("Password must be at least 8 characters long")
    if len(value) > 128:
        raise ValueError("Password must not exceed 128 characters")
    if not PASSWORD_PATTERN.match(value):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase "
            "letter, one number, and one special character"
        )
    return value


def clean_full_name(value) -> str:
    value = _require_str(value, "full_name").strip()
    if not value:
        raise ValueError("Full name is required")
    if len(value) < 2:
        raise ValueError("Full name must be at least 2 characters long")
    if len(value) > 100:
        raise ValueError("Full name must not exceed 100 characters")
    if not FULL_NAME_PATTERN.match(value):
        raise ValueError(
            "Full name can only contain letters, spaces, hyphens, and apostrophes"
        )
    return value


def clean_phone_number(value) -> str:
    value = _require_str(value, "phone_number").strip()
    if not value:
        raise ValueError("Phone number is required")
    cleaned = PHONE_SEPARATORS.sub("", value)
    if not PHONE_PATTERN.match(cleaned):
        raise ValueError(
            "Invalid phone number format. Must be 8-15 digits, optionally starting with +"
        )
    return cleaned


def clean_profile_image_url(value) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("Profile image URL must be a string")
    value = value.strip()
    if value == "":
        return None
    if len(value) > 500:
        raise ValueError("Profile image URL must not exceed 500 characters")
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("Invalid URL format for profile image")
    if not IMAGE_EXTENSION_PATTERN.search(parsed.path):
        raise ValueError(
            "Profile image URL must end with a valid image extension "
            "(.jpg, .jpeg, .png, .gif, .webp, .svg)"
        )
    return value


def clean_currency(value) -> Currency:
    if isinstance(value, Currency):
        return value
    value = _require_str(value, "preferred_currency").strip().upper()
    if not value:
        raise ValueError("Preferred currency is required")
    try:
        return Currency(value)
    except ValueError:
        raise ValueError("Preferred currency must be either NGN or USD")


EmailField = Annotated[str, BeforeValidator(clean_email)]
PasswordField = Annotated[str, BeforeValidator(check_password)]
FullNameField = Annotated[str, BeforeValidator(clean_full_name)]
PhoneField = Annotated[str, BeforeValidator(clean_phone_number)]
ImageURLField = Annotated[Optional[str], BeforeValidator(clean_profile_image_url)]
CurrencyField = Annotated[Currency, BeforeValidator(clean_currency)]


class RegisterData(BaseModel):
    """Normalized registration input. Unknown fields are dropped."""

    model_config = ConfigDict(extra="ignore")

    email: EmailField
    # older clients post the plain password as "password_hash"
    password: PasswordField = Field(
        validation_alias=AliasChoices("password", "password_hash")
    )
    full_name: FullNameField
    phone_number: PhoneField
    profile_image_url: ImageURLField = None
    preferred_currency: CurrencyField


class UserUpdate(BaseModel):
    """Profile fields a user may change. Id, hash, role, registration
    time and the active flag are not accepted here."""

    model_config = ConfigDict(extra="ignore")

    email: Optional[EmailField] = None
    full_name: Optional[FullNameField] = None
    phone_number: Optional[PhoneField] = None
    profile_image_url: ImageURLField = None
    preferred_currency: Optional[CurrencyField] = None
    balance_visibility_default: Optional[bool] = None


def _field_errors(exc: ValidationError) -> List[FieldError]:
    errors = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "body"
        if err["type"] == "missing":
            message = REQUIRED_MESSAGES.get(field, f"{field} is required")
        elif err["type"] == "value_error" and "error" in err.get("ctx", {}):
            message = str(err["ctx"]["error"])
        else:
            message = err["msg"]
        errors.append(FieldError(field=field, message=message))
    return errors


def validate_registration(raw: Any) -> Tuple[Optional[RegisterData], List[FieldError]]:
    """Return ``(data, [])`` on success or ``(None, errors)`` with every
    failing field listed."""
    try:
        return RegisterData.model_validate(raw), []
    except ValidationError as exc:
        return None, _field_errors(exc)


def validate_user_update(raw: Any) -> Tuple[Optional[Dict[str, Any]], List[FieldError]]:
    """Validate a partial profile update, keeping only the fields sent."""
    try:
        update = UserUpdate.model_validate(raw)
    except ValidationError as exc:
        return None, _field_errors(exc)
    values = update.model_dump(exclude_unset=True)
    errors = [
        FieldError(field=name, message=f"{name} cannot be null")
        for name, value in values.items()
        if value is None and name != "profile_image_url"
    ]
    if errors:
        return None, errors
    return values, []
