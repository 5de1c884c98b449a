"""Domain models for account records and one-time passcode challenges."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional


class OtpPurpose(str, Enum):
    """Why a passcode was issued. Only used to word the notification."""

    VERIFY_EMAIL = "verify-email"
    RESET_PASSWORD = "reset-password"


def normalise_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class UserDraft:
    """Registration payload as received from the boundary layer."""

    email: str
    username: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    referral_code: Optional[str] = None


@dataclass(frozen=True)
class NewUserRecord:
    """A draft whose password has already been hashed, ready for insertion."""

    email: str
    username: str
    password_hash: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    referral_code: Optional[str] = None

    @classmethod
    def from_draft(cls, draft: UserDraft, password_hash: str) -> "NewUserRecord":
        return cls(
            email=normalise_email(draft.email),
            username=draft.username.strip(),
            password_hash=password_hash,
            first_name=draft.first_name,
            last_name=draft.last_name,
            phone_number=draft.phone_number,
            address=draft.address,
            referral_code=draft.referral_code,
        )


@dataclass(frozen=True)
class User:
    """Represents an account stored in the credential database."""

    id: int
    email: str
    username: str
    password_hash: str
    created_at: datetime
    email_verified_at: Optional[datetime] = None
    otp: Optional[str] = None
    otp_expires_at: Optional[datetime] = None
    version: int = 0
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    referral_code: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.otp is None) != (self.otp_expires_at is None):
            raise ValueError("otp and otp_expires_at must be set or cleared together")

    @property
    def is_verified(self) -> bool:
        return self.email_verified_at is not None

    @property
    def has_challenge(self) -> bool:
        return self.otp is not None

    def with_changes(self, **changes: object) -> "User":
        return replace(self, **changes)


__all__ = ["NewUserRecord", "OtpPurpose", "User", "UserDraft", "normalise_email"]
