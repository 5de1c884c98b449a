"""FastAPI boundary exposing the account lifecycle endpoints."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator, model_validator

from .config import AuthSettings
from .database import CredentialStore
from .models import User, UserDraft
from .notifier import LoggingNotifier, Notifier, SMTPNotifier
from .otp import OtpChallenge, OtpGenerator
from .results import AuthErrorKind, Err
from .security import PasslibPasswordHasher, SessionTokenIssuer
from .service import AuthService

logger = logging.getLogger("authcore.api")

_MAX_FIELD_LENGTH = 255
_OTP_PATTERN = r"^[0-9]{6}$"
_UNPROCESSABLE = 422


def _check_email(value: str) -> str:
    normalised = value.strip().lower()
    local, _, domain = normalised.partition("@")
    if not local or not domain or " " in normalised:
        raise ValueError("A valid email address is required")
    return normalised


class EmailRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=_MAX_FIELD_LENGTH)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _check_email(value)


class RegisterRequest(EmailRequest):
    username: str = Field(..., min_length=3, max_length=_MAX_FIELD_LENGTH)
    password: str = Field(..., min_length=8, max_length=_MAX_FIELD_LENGTH)
    password_confirmation: str
    first_name: Optional[str] = Field(default=None, min_length=3, max_length=_MAX_FIELD_LENGTH)
    last_name: Optional[str] = Field(default=None, min_length=3, max_length=_MAX_FIELD_LENGTH)
    phone_number: Optional[str] = Field(default=None, min_length=8, max_length=32)
    address: Optional[str] = Field(default=None, max_length=_MAX_FIELD_LENGTH)
    referral_code: Optional[str] = Field(default=None, max_length=10)

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.password_confirmation:
            raise ValueError("Password confirmation does not match")
        return self


class LoginRequest(EmailRequest):
    password: str = Field(..., min_length=1, max_length=_MAX_FIELD_LENGTH)


class VerifyOtpRequest(EmailRequest):
    otp: str = Field(..., pattern=_OTP_PATTERN)


class ResetPasswordRequest(EmailRequest):
    otp: str = Field(..., pattern=_OTP_PATTERN)
    password: str = Field(..., min_length=8, max_length=_MAX_FIELD_LENGTH)
    password_confirmation: str

    @model_validator(mode="after")
    def passwords_match(self) -> "ResetPasswordRequest":
        if self.password != self.password_confirmation:
            raise ValueError("Password confirmation does not match")
        return self


class RegistrationView(BaseModel):
    id: int
    email: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    referral_code: Optional[str] = None
    email_verified_at: Optional[datetime] = None
    created_at: datetime


def _registration_view(user: User) -> RegistrationView:
    return RegistrationView(
        id=user.id,
        email=user.email,
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
        phone_number=user.phone_number,
        address=user.address,
        referral_code=user.referral_code,
        email_verified_at=user.email_verified_at,
        created_at=user.created_at,
    )


_STATUS_FOR_ERROR = {
    AuthErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthErrorKind.DUPLICATE_EMAIL: _UNPROCESSABLE,
    AuthErrorKind.INVALID_INPUT: _UNPROCESSABLE,
    AuthErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.EMAIL_UNVERIFIED: status.HTTP_403_FORBIDDEN,
    AuthErrorKind.INVALID: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.EXPIRED: status.HTTP_400_BAD_REQUEST,
}


def _envelope(success: bool, message: str, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"status": success, "message": message}
    payload.update(extra)
    return payload


def _error_response(error: Err, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=_STATUS_FOR_ERROR[error.kind],
        content=_envelope(False, error.message, **extra),
    )


def build_service(settings: AuthSettings, *, notifier: Notifier | None = None) -> AuthService:
    """Wire an :class:`AuthService` from settings."""

    store = CredentialStore(settings.database_path)
    store.initialize()

    if notifier is None:
        if settings.smtp is not None:
            notifier = SMTPNotifier(
                settings.smtp,
                otp_minutes=int(settings.otp_ttl.total_seconds() // 60),
            )
        else:
            logger.warning("No SMTP server configured; passcodes will not be delivered.")
            notifier = LoggingNotifier()

    return AuthService(
        store,
        hasher=PasslibPasswordHasher(),
        notifier=notifier,
        tokens=SessionTokenIssuer(settings.session_secret),
        challenge=OtpChallenge(OtpGenerator(ttl=settings.otp_ttl)),
        allow_unverified_login=settings.allow_unverified_login,
        password_min_length=settings.password_min_length,
    )


def register_auth_routes(app: FastAPI, service: AuthService) -> None:
    """Expose the JSON account endpoints on the provided FastAPI application."""

    @app.get("/healthz")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/auth/register", status_code=status.HTTP_201_CREATED)
    def register(request: RegisterRequest):
        result = service.register(
            UserDraft(
                email=request.email,
                username=request.username,
                password=request.password,
                first_name=request.first_name,
                last_name=request.last_name,
                phone_number=request.phone_number,
                address=request.address,
                referral_code=request.referral_code,
            )
        )
        if isinstance(result, Err):
            return _error_response(result, data={})
        return _envelope(
            True,
            "User registered successfully, Please verify your email.",
            data=_registration_view(result.value).model_dump(mode="json"),
        )

    @app.post("/auth/login")
    def login(request: LoginRequest):
        result = service.login(request.email, request.password)
        if isinstance(result, Err):
            return _error_response(result, token="")
        return _envelope(True, "Login successfully", token=result.value.token)

    @app.post("/auth/request-verification")
    def request_verification(request: EmailRequest):
        result = service.request_email_verification(request.email)
        if isinstance(result, Err):
            return _error_response(result)
        return _envelope(True, "OTP sent successfully.")

    @app.post("/auth/verify-otp")
    def verify_otp(request: VerifyOtpRequest):
        result = service.verify_otp(request.email, request.otp)
        if isinstance(result, Err):
            # Unknown addresses get the same answer as a wrong code.
            if result.kind is AuthErrorKind.NOT_FOUND:
                result = Err.of(AuthErrorKind.INVALID)
            return _error_response(result)
        return _envelope(True, "Email verified successfully.")

    @app.post("/auth/request-password-reset")
    def request_password_reset(request: EmailRequest):
        result = service.request_password_reset(request.email)
        if isinstance(result, Err):
            return _error_response(result)
        return _envelope(True, "OTP sent for password reset.")

    @app.post("/auth/reset-password")
    def reset_password(request: ResetPasswordRequest):
        result = service.reset_password(request.email, request.otp, request.password)
        if isinstance(result, Err):
            if result.kind is AuthErrorKind.NOT_FOUND:
                result = Err.of(AuthErrorKind.INVALID)
            return _error_response(result)
        return _envelope(True, "Password reset successfully.")


def create_app(
    *,
    service: AuthService | None = None,
    settings: AuthSettings | None = None,
) -> FastAPI:
    """Return the account API application."""

    if service is None:
        if settings is None:
            from .config import load_settings

            settings = load_settings()
        service = build_service(settings)

    app = FastAPI(
        title="authcore",
        version="0.1.0",
        description="Registration, login and one-time passcode flows.",
    )
    app.state.auth_service = service
    register_auth_routes(app, service)
    return app


__all__ = [
    "EmailRequest",
    "LoginRequest",
    "RegisterRequest",
    "ResetPasswordRequest",
    "VerifyOtpRequest",
    "build_service",
    "create_app",
    "register_auth_routes",
]
