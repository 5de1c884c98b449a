"""Tagged results returned by the account service."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class AuthErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    DUPLICATE_EMAIL = "duplicate_email"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID = "invalid"
    EXPIRED = "expired"
    INVALID_INPUT = "invalid_input"
    EMAIL_UNVERIFIED = "email_unverified"


# One message per kind. Callers never see the underlying cause.
ERROR_MESSAGES = {
    AuthErrorKind.NOT_FOUND: "User not found.",
    AuthErrorKind.DUPLICATE_EMAIL: "A user with that email already exists.",
    AuthErrorKind.INVALID_CREDENTIALS: "Invalid email or password.",
    AuthErrorKind.INVALID: "Invalid OTP or OTP expired.",
    AuthErrorKind.EXPIRED: "Invalid OTP or OTP expired.",
    AuthErrorKind.INVALID_INPUT: "The submitted data is invalid.",
    AuthErrorKind.EMAIL_UNVERIFIED: "Please verify your email address before signing in.",
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: AuthErrorKind
    message: str

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def of(cls, kind: AuthErrorKind) -> "Err":
        return cls(kind=kind, message=ERROR_MESSAGES[kind])


Result = Union[Ok[T], Err]


__all__ = ["AuthErrorKind", "ERROR_MESSAGES", "Err", "Ok", "Result"]
