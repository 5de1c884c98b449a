"""Account lifecycle orchestration: registration, login and OTP-gated flows."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from .database import CredentialStore, DuplicateEmailError, UserNotFoundError
from .models import NewUserRecord, OtpPurpose, User, UserDraft, normalise_email
from .notifier import Notifier
from .otp import IssuedOtp, OtpChallenge, OtpCheck
from .results import AuthErrorKind, Err, Ok, Result
from .security import PasswordHasher, SessionTokenIssuer

logger = logging.getLogger("authcore.service")

_CHECK_ERRORS = {
    OtpCheck.INVALID: AuthErrorKind.INVALID,
    OtpCheck.EXPIRED: AuthErrorKind.EXPIRED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LoginToken:
    token: str
    user_id: int
    issued_at: datetime


@dataclass(frozen=True)
class OtpDispatch:
    """Outcome of an issuing operation. The code itself is never returned."""

    email: str
    expires_at: datetime


class AuthService:
    """Compose the credential store, passcode challenge, notifier and hasher."""

    def __init__(
        self,
        store: CredentialStore,
        *,
        hasher: PasswordHasher,
        notifier: Notifier,
        tokens: SessionTokenIssuer,
        challenge: Optional[OtpChallenge] = None,
        allow_unverified_login: bool = True,
        password_min_length: int = 8,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._notifier = notifier
        self._tokens = tokens
        self._challenge = challenge or OtpChallenge(clock=clock)
        self._allow_unverified_login = allow_unverified_login
        self._password_min_length = password_min_length
        self._clock = clock
        self._dummy_hash: Optional[str] = None

    @property
    def allow_unverified_login(self) -> bool:
        return self._allow_unverified_login

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------
    def register(self, draft: UserDraft) -> Result[User]:
        if not self._draft_is_valid(draft):
            return Err.of(AuthErrorKind.INVALID_INPUT)

        password_hash = self._hasher.hash(draft.password)
        try:
            user = self._store.create(NewUserRecord.from_draft(draft, password_hash))
        except DuplicateEmailError:
            logger.info("Registration rejected for existing email %s", normalise_email(draft.email))
            return Err.of(AuthErrorKind.DUPLICATE_EMAIL)

        logger.info("Registered user %s", user.id)
        issued = self._issue(user.email, OtpPurpose.VERIFY_EMAIL)
        if isinstance(issued, Err):
            # Account was removed between insert and issue; nothing left to verify.
            return issued
        return Ok(issued.value.user)

    def login(self, email: str, password: str) -> Result[LoginToken]:
        user = self._store.find_by_email(email)
        if user is None:
            # Spend the same hashing work as a real check.
            self._hasher.verify(password, self._placeholder_hash())
            logger.warning("Failed login attempt for %s", normalise_email(email))
            return Err.of(AuthErrorKind.INVALID_CREDENTIALS)

        if not self._hasher.verify(password, user.password_hash):
            logger.warning("Failed login attempt for %s", user.email)
            return Err.of(AuthErrorKind.INVALID_CREDENTIALS)

        if not user.is_verified and not self._allow_unverified_login:
            logger.info("Login refused for unverified user %s", user.id)
            return Err.of(AuthErrorKind.EMAIL_UNVERIFIED)

        issued_at = self._clock()
        token = self._tokens.issue(user.id, issued_at)
        logger.info("User %s signed in", user.id)
        return Ok(LoginToken(token=token, user_id=user.id, issued_at=issued_at))

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------
    def request_email_verification(self, email: str) -> Result[OtpDispatch]:
        issued = self._issue(email, OtpPurpose.VERIFY_EMAIL)
        if isinstance(issued, Err):
            return issued
        return Ok(OtpDispatch(email=issued.value.user.email, expires_at=issued.value.expires_at))

    def verify_otp(self, email: str, code: str, now: Optional[datetime] = None) -> Result[User]:
        checked_at = self._resolve_now(now)
        try:
            with self._store.transaction(email) as tx:
                outcome = self._challenge.consume(tx.user, code, checked_at)
                if outcome is not OtpCheck.OK:
                    logger.info("Email verification failed for user %s: %s", tx.user.id, outcome.value)
                    return Err.of(_CHECK_ERRORS[outcome])

                verified = self._challenge.clear(tx.user).with_changes(
                    email_verified_at=tx.user.email_verified_at or checked_at,
                )
                saved = tx.save(verified)
        except UserNotFoundError:
            return Err.of(AuthErrorKind.NOT_FOUND)

        logger.info("User %s verified their email address", saved.id)
        return Ok(saved)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------
    def request_password_reset(self, email: str) -> Result[OtpDispatch]:
        issued = self._issue(email, OtpPurpose.RESET_PASSWORD)
        if isinstance(issued, Err):
            return issued
        return Ok(OtpDispatch(email=issued.value.user.email, expires_at=issued.value.expires_at))

    def reset_password(
        self,
        email: str,
        code: str,
        new_password: str,
        now: Optional[datetime] = None,
    ) -> Result[User]:
        if not self._password_is_acceptable(new_password):
            return Err.of(AuthErrorKind.INVALID_INPUT)

        checked_at = self._resolve_now(now)
        try:
            with self._store.transaction(email) as tx:
                outcome = self._challenge.consume(tx.user, code, checked_at)
                if outcome is not OtpCheck.OK:
                    logger.info("Password reset failed for user %s: %s", tx.user.id, outcome.value)
                    return Err.of(_CHECK_ERRORS[outcome])

                updated = self._challenge.clear(tx.user).with_changes(
                    password_hash=self._hasher.hash(new_password),
                )
                saved = tx.save(updated)
        except UserNotFoundError:
            return Err.of(AuthErrorKind.NOT_FOUND)

        logger.info("User %s reset their password", saved.id)
        return Ok(saved)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _issue(self, email: str, purpose: OtpPurpose) -> Result[IssuedOtp]:
        try:
            with self._store.transaction(email) as tx:
                issued = self._challenge.issue(tx.user, tx, self._clock())
        except UserNotFoundError:
            return Err.of(AuthErrorKind.NOT_FOUND)

        logger.info(
            "Issued %s passcode for user %s (expires %s)",
            purpose.value,
            issued.user.id,
            issued.expires_at.isoformat(),
        )
        self._notify(issued.user.email, issued.code, purpose)
        return Ok(issued)

    def _notify(self, address: str, code: str, purpose: OtpPurpose) -> None:
        try:
            self._notifier.send_otp(address, code, purpose)
        except Exception:
            # Delivery is best effort; the caller's outcome does not depend on it.
            logger.exception("Failed to deliver %s passcode to %s", purpose.value, address)

    def _draft_is_valid(self, draft: UserDraft) -> bool:
        email = normalise_email(draft.email or "")
        if not email or "@" not in email:
            return False
        if not (draft.username or "").strip():
            return False
        return self._password_is_acceptable(draft.password)

    def _password_is_acceptable(self, password: Optional[str]) -> bool:
        return bool(password) and len(password) >= self._password_min_length

    def _placeholder_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash("placeholder-password-for-timing")
        return self._dummy_hash

    def _resolve_now(self, now: Optional[datetime]) -> datetime:
        if now is None:
            return self._clock()
        if now.tzinfo is None:
            return now.replace(tzinfo=timezone.utc)
        return now


__all__ = ["AuthService", "LoginToken", "OtpDispatch"]
