"""Account registration, login and one-time passcode flows."""

from __future__ import annotations

from typing import Any

from .database import CredentialStore, resolve_database_path
from .models import OtpPurpose, User, UserDraft
from .otp import OtpChallenge, OtpCheck, OtpGenerator
from .results import AuthErrorKind, Err, Ok
from .service import AuthService


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "AuthErrorKind",
    "AuthService",
    "CredentialStore",
    "Err",
    "Ok",
    "OtpChallenge",
    "OtpCheck",
    "OtpGenerator",
    "OtpPurpose",
    "User",
    "UserDraft",
    "create_app",
    "resolve_database_path",
]
