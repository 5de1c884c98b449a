"""Password hashing and session credential helpers."""
from __future__ import annotations

import base64
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence

from cryptography.fernet import Fernet, InvalidToken
from passlib.context import CryptContext

DEFAULT_PASSWORD_SCHEMES = ("pbkdf2_sha256",)


class PasswordHasher(Protocol):
    def hash(self, plaintext: str) -> str:
        ...

    def verify(self, plaintext: str, hashed: str) -> bool:
        ...


class PasslibPasswordHasher:
    """One-way password hashing backed by a passlib :class:`CryptContext`."""

    def __init__(self, schemes: Sequence[str] = DEFAULT_PASSWORD_SCHEMES) -> None:
        self._context = CryptContext(schemes=list(schemes), deprecated="auto")

    def hash(self, plaintext: str) -> str:
        if not plaintext:
            raise ValueError("Password must not be empty")
        return self._context.hash(plaintext)

    def verify(self, plaintext: str, hashed: str) -> bool:
        if not hashed:
            return False
        try:
            return self._context.verify(plaintext, hashed)
        except ValueError:
            return False


@dataclass(frozen=True)
class SessionClaims:
    user_id: int
    issued_at: datetime


def _build_cipher(secret: str) -> Fernet:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    key = base64.urlsafe_b64encode(digest)
    return Fernet(key)


class SessionTokenIssuer:
    """Issue stateless, authenticated session tokens carrying the user id."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("A session secret must be configured to issue tokens")
        self._cipher = _build_cipher(secret)

    def issue(self, user_id: int, issued_at: Optional[datetime] = None) -> str:
        issued_at = issued_at or datetime.now(timezone.utc)
        payload = json.dumps({"sub": user_id, "iat": int(issued_at.timestamp())}).encode("utf-8")
        token = self._cipher.encrypt_at_time(payload, int(issued_at.timestamp()))
        return token.decode("utf-8")

    def decode(self, token: str, *, max_age: Optional[int] = None) -> SessionClaims:
        try:
            payload = self._cipher.decrypt(token.encode("utf-8"), ttl=max_age)
        except InvalidToken as exc:
            raise ValueError("Session token is invalid or has expired") from exc

        data = json.loads(payload.decode("utf-8"))
        return SessionClaims(
            user_id=int(data["sub"]),
            issued_at=datetime.fromtimestamp(int(data["iat"]), tz=timezone.utc),
        )


__all__ = [
    "DEFAULT_PASSWORD_SCHEMES",
    "PasslibPasswordHasher",
    "PasswordHasher",
    "SessionClaims",
    "SessionTokenIssuer",
]
