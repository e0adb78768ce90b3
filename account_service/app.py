# account_service/app.py
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .auth import AuthService
from .config import Settings
from .database import init_db, make_engine, make_session_factory, session_scope
from .logger import setup_logging
from .mailer import Mailer
from .models import Role
from .otp import OTPService
from .schemas import (
    ApiResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshRequest,
    ResetPasswordRequest,
    ServiceResult,
    TokenClaims,
    VerifyOTPRequest,
)
from .tokens import InvalidTokenError, TokenIssuer
from .users import USER_NOT_FOUND_FIELD, UserService, to_user_out

log = logging.getLogger(__name__)


# --- Response helpers ---
def envelope(status_code: int, success: bool, message: str,
             error: Optional[str] = None, data: Any = None) -> JSONResponse:
    body = ApiResponse(success=success, message=message, error=error, data=data)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def from_result(result: ServiceResult, success_status: int = status.HTTP_200_OK,
                failure_status: int = status.HTTP_400_BAD_REQUEST,
                default_error: str = "Unknown error") -> JSONResponse:
    """Convert a service result into the HTTP envelope."""
    if result.success:
        return envelope(success_status, True, result.message, None, result.data)
    if result.is_internal_error:
        return envelope(
            status.HTTP_500_INTERNAL_SERVER_ERROR, False, result.message, result.first_error
        )
    return envelope(failure_status, False, result.message, result.first_error or default_error)


# --- Dependencies ---
def get_db(request: Request):
    yield from session_scope(request.app.state.session_factory)


def get_token_issuer(request: Request) -> TokenIssuer:
    return request.app.state.tokens


def get_user_service(db: Session = Depends(get_db)) -> UserService:
    return UserService(db)


def get_auth_service(request: Request, db: Session = Depends(get_db)) -> AuthService:
    settings: Settings = request.app.state.settings
    otp = OTPService(
        db,
        expire_minutes=settings.otp_expire_minutes,
        max_attempts=settings.otp_max_attempts,
    )
    return AuthService(db, request.app.state.tokens, request.app.state.mailer, otp=otp)


def get_current_user_claims(
    authorization: Optional[str] = Header(None),
    tokens: TokenIssuer = Depends(get_token_issuer),
) -> TokenClaims:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided. Authorization header must be in format: Bearer <token>",
        )
    token = authorization[len("Bearer "):].strip()
    try:
        return tokens.verify_access(token)
    except InvalidTokenError as ex:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(ex))


def role_required(*roles: Role):
    allowed = {Role(r).value for r in roles}

    def _check(claims: TokenClaims = Depends(get_current_user_claims)) -> TokenClaims:
        if claims.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return claims

    return _check


admin_required = role_required(Role.ADMIN)


def _not_found(result: ServiceResult) -> bool:
    return bool(result.errors) and result.errors[0].field == USER_NOT_FOUND_FIELD


def _self_or_admin(user_id: str, claims: TokenClaims):
    if claims.user_id != user_id and claims.role != Role.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only modify your own account",
        )


# ------------------------------------------------------------------
# --- ROUTES DEFINITIONS ---
# ------------------------------------------------------------------
users_router = APIRouter(prefix="/users", tags=["Users"])
auth_router = APIRouter(prefix="/auth", tags=["Authentication"])
admin_router = APIRouter(prefix="/admin", tags=["Admin Management"])


@users_router.post("")
async def create_user(request: Request, users: UserService = Depends(get_user_service)):
    try:
        raw = await request.json()
    except ValueError:
        return envelope(status.HTTP_400_BAD_REQUEST, False, "Invalid JSON body",
                        "Request body must be a JSON object")

    result = await run_in_threadpool(users.create_user, raw)
    if not result.success and result.errors and not result.is_internal_error:
        return envelope(
            status.HTTP_400_BAD_REQUEST,
            False,
            result.message,
            ", ".join(err.message for err in result.errors),
        )
    return from_result(result, success_status=status.HTTP_201_CREATED)


@users_router.get("")
def get_user_by_email(
    email: Optional[str] = Query(None), users: UserService = Depends(get_user_service)
):
    if not email:
        return envelope(status.HTTP_400_BAD_REQUEST, False, "Email is required",
                        "Please provide an email address")
    user = users.get_user_by_email(email)
    if user is None:
        return envelope(status.HTTP_404_NOT_FOUND, False, "User not found",
                        "No user exists with the provided email")
    return envelope(status.HTTP_200_OK, True, "User retrieved successfully",
                    data=to_user_out(user))


@users_router.get("/{user_id}")
def get_user_by_id(user_id: str, users: UserService = Depends(get_user_service)):
    user = users.get_user_by_id(user_id)
    if user is None:
        return envelope(status.HTTP_404_NOT_FOUND, False, "User not found",
                        "No user exists with the provided ID")
    return envelope(status.HTTP_200_OK, True, "User retrieved successfully", data=user)


@users_router.patch("/{user_id}")
async def update_user(
    user_id: str,
    request: Request,
    claims: TokenClaims = Depends(get_current_user_claims),
    users: UserService = Depends(get_user_service),
):
    _self_or_admin(user_id, claims)
    try:
        raw = await request.json()
    except ValueError:
        return envelope(status.HTTP_400_BAD_REQUEST, False, "Invalid JSON body",
                        "Request body must be a JSON object")
    result = await run_in_threadpool(users.update_user, user_id, raw)
    failure = status.HTTP_404_NOT_FOUND if _not_found(result) else status.HTTP_400_BAD_REQUEST
    return from_result(result, failure_status=failure, default_error="Failed to update user")


@users_router.delete("/{user_id}")
def soft_delete_user(
    user_id: str,
    claims: TokenClaims = Depends(get_current_user_claims),
    users: UserService = Depends(get_user_service),
):
    _self_or_admin(user_id, claims)
    result = users.soft_delete_user(user_id)
    failure = status.HTTP_404_NOT_FOUND if _not_found(result) else status.HTTP_400_BAD_REQUEST
    return from_result(result, failure_status=failure, default_error="Failed to deactivate user")


@auth_router.post("/login")
async def login(data: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    if not data.email or not data.password:
        return envelope(status.HTTP_400_BAD_REQUEST, False, "Email and password are required",
                        "Email and password are required")
    result = await auth.login(data.email, data.password)
    return from_result(result)


@auth_router.post("/refresh")
@auth_router.post("/refresh-token", include_in_schema=False)
async def refresh_token(data: RefreshRequest, auth: AuthService = Depends(get_auth_service)):
    if not data.refresh_token:
        return envelope(status.HTTP_400_BAD_REQUEST, False, "Refresh token is required",
                        "Please provide a refresh token")
    result = await auth.refresh(data.refresh_token)
    return from_result(result, failure_status=status.HTTP_401_UNAUTHORIZED,
                       default_error="Invalid refresh token")


@auth_router.post("/change-password")
async def change_password(
    data: ChangePasswordRequest,
    claims: TokenClaims = Depends(get_current_user_claims),
    auth: AuthService = Depends(get_auth_service),
):
    result = await auth.change_password(claims.user_id, data.old_password, data.new_password)
    return from_result(result, default_error="Failed to change password")


@auth_router.post("/forgot-password")
async def forgot_password(
    data: ForgotPasswordRequest, auth: AuthService = Depends(get_auth_service)
):
    if not data.email:
        return envelope(status.HTTP_400_BAD_REQUEST, False, "Email is required",
                        "Please provide your email address")
    result = await auth.forgot_password(data.email)
    if result.is_internal_error:
        return from_result(result)
    # always 200 so the status code does not reveal whether the account exists
    return envelope(status.HTTP_200_OK, result.success, result.message,
                    None if result.success else result.first_error)


@auth_router.post("/verify-otp")
async def verify_otp(data: VerifyOTPRequest, auth: AuthService = Depends(get_auth_service)):
    if not data.email or not data.otp:
        return envelope(status.HTTP_400_BAD_REQUEST, False, "Email and OTP are required",
                        "Please provide both email and OTP")
    result = await auth.verify_otp(data.email, data.otp)
    return from_result(result)


@auth_router.post("/reset-password")
async def reset_password(
    data: ResetPasswordRequest, auth: AuthService = Depends(get_auth_service)
):
    result = await auth.reset_password(data.email, data.otp, data.new_password)
    return from_result(result, default_error="Failed to reset password")


@auth_router.post("/logout")
async def logout(claims: TokenClaims = Depends(get_current_user_claims)):
    # tokens are stateless; the client discards them
    log.info("User %s logged out", claims.user_id)
    return envelope(status.HTTP_200_OK, True, "Logged out successfully")


# --- ADMIN ROUTES ---
@admin_router.get("/users")
def get_all_users(
    users: UserService = Depends(get_user_service),
    claims: TokenClaims = Depends(admin_required),
):
    return envelope(status.HTTP_200_OK, True, "Users retrieved successfully",
                    data=users.list_users())


@admin_router.post("/otp/cleanup")
def cleanup_otps(
    db: Session = Depends(get_db),
    claims: TokenClaims = Depends(admin_required),
):
    deleted = OTPService(db).cleanup_expired()
    db.commit()
    log.info("Expired OTP cleanup removed %d record(s)", deleted)
    return envelope(status.HTTP_200_OK, True, "Expired OTPs removed", data={"deleted": deleted})


# --- Exception handlers ---
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    response = envelope(exc.status_code, False, detail, detail)
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return envelope(status.HTTP_400_BAD_REQUEST, False, "Validation failed", "; ".join(messages))


async def unhandled_exception_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, False, "Internal server error", str(exc))


# ------------------------------------------------------------------
# --- APPLICATION SETUP ---
# ------------------------------------------------------------------
def create_app(settings: Optional[Settings] = None, session_factory=None,
               mailer: Optional[Mailer] = None, tokens: Optional[TokenIssuer] = None,
               create_tables: bool = True) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)

    if session_factory is None:
        engine = make_engine(settings.database_url)
        if create_tables:
            init_db(engine)
        session_factory = make_session_factory(engine)

    app = FastAPI(title="Account Service", version=__version__)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.tokens = tokens or TokenIssuer.from_settings(settings)
    app.state.mailer = mailer or Mailer.from_settings(settings)

    # CORS setup
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Routers
    app.include_router(users_router)
    app.include_router(auth_router)
    app.include_router(admin_router)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "message": "Account service is running"}

    return app
