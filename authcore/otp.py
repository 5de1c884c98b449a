"""One-time passcode generation and single-use verification.

A challenge is not a separate entity: it lives in the ``otp`` and
``otp_expires_at`` fields of a :class:`~authcore.models.User`. The record moves
through the following states::

    NoChallenge (both null) --issue--> Pending (now < expiry)
    Pending --consume OK + clear--> NoChallenge
    Pending --clock passes expiry--> Expired (fields kept until re-issue/clear)
    any state --issue--> Pending (previous code is replaced)

:meth:`OtpChallenge.consume` only validates. Clearing the fields is bundled
by the caller with whatever effect the successful check unlocks, so both land
in the same save.
"""

from __future__ import annotations

import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Protocol

from .models import User

OTP_MIN = 100_000
OTP_MAX = 999_999
DEFAULT_OTP_TTL = timedelta(minutes=10)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    # Stored expiries are aware; naive input is read as UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class OtpCheck(str, Enum):
    OK = "ok"
    INVALID = "invalid"
    EXPIRED = "expired"


class RecordSaver(Protocol):
    def save(self, user: User) -> User:
        ...


@dataclass(frozen=True)
class IssuedOtp:
    code: str
    expires_at: datetime
    user: User


class OtpGenerator:
    """Draw six-digit codes and compute their expiry."""

    def __init__(
        self,
        *,
        ttl: timedelta = DEFAULT_OTP_TTL,
        randbelow: Callable[[int], int] = secrets.randbelow,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("OTP lifetime must be positive")
        self._ttl = ttl
        self._randbelow = randbelow

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def generate(self) -> str:
        # Range starts at 100000, so codes never need zero padding.
        return str(OTP_MIN + self._randbelow(OTP_MAX - OTP_MIN + 1))

    def expiry(self, now: datetime) -> datetime:
        return now + self._ttl


class OtpChallenge:
    """Issue codes onto user records and check submitted codes against them."""

    def __init__(
        self,
        generator: Optional[OtpGenerator] = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._generator = generator or OtpGenerator()
        self._clock = clock

    @property
    def generator(self) -> OtpGenerator:
        return self._generator

    def issue(self, user: User, store: RecordSaver, now: Optional[datetime] = None) -> IssuedOtp:
        """Attach a fresh code to ``user`` and persist it with a single save.

        Any code issued earlier becomes unusable because it is overwritten.
        """

        issued_at = _as_utc(now or self._clock())
        code = self._generator.generate()
        expires_at = self._generator.expiry(issued_at)
        saved = store.save(user.with_changes(otp=code, otp_expires_at=expires_at))
        return IssuedOtp(code=code, expires_at=expires_at, user=saved)

    def consume(self, user: User, supplied_code: str, now: Optional[datetime] = None) -> OtpCheck:
        checked_at = _as_utc(now or self._clock())
        if user.otp is None or user.otp_expires_at is None:
            return OtpCheck.INVALID
        if checked_at >= user.otp_expires_at:
            return OtpCheck.EXPIRED
        if not hmac.compare_digest(user.otp.encode("ascii"), supplied_code.encode("utf-8")):
            return OtpCheck.INVALID
        return OtpCheck.OK

    @staticmethod
    def clear(user: User) -> User:
        return user.with_changes(otp=None, otp_expires_at=None)


__all__ = [
    "DEFAULT_OTP_TTL",
    "IssuedOtp",
    "OtpChallenge",
    "OtpCheck",
    "OtpGenerator",
    "RecordSaver",
]
