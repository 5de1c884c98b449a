"""SQLite-backed persistence for account records."""
from __future__ import annotations

import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from .models import NewUserRecord, User, normalise_email

DEFAULT_BUSY_TIMEOUT = 30.0


class CredentialStoreError(Exception):
    """Base class for persistence failures raised by :class:`CredentialStore`."""


class DuplicateEmailError(CredentialStoreError):
    pass


class UserNotFoundError(CredentialStoreError):
    pass


class StaleRecordError(CredentialStoreError):
    """Raised when a save is based on a record that changed since it was read."""


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the credential database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "authcore.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


_UPDATE_USER = """
    UPDATE users
       SET password_hash = ?,
           email_verified_at = COALESCE(email_verified_at, ?),
           otp = ?,
           otp_expires_at = ?,
           version = version + 1
     WHERE id = ? AND version = ?
"""


class UserTransaction:
    """A single fetch-mutate-persist unit of work over one user record.

    The underlying connection holds the database write lock for the lifetime
    of the transaction, so no other writer can interleave between the read
    and the save.
    """

    def __init__(self, store: "CredentialStore", conn: sqlite3.Connection, user: User) -> None:
        self._store = store
        self._conn = conn
        self.user = user

    def save(self, user: User) -> User:
        if user.id != self.user.id:
            raise ValueError("A transaction may only save the record it was opened for")
        self.user = self._store._save_with(self._conn, user)
        return self.user


class CredentialStore:
    """Owns persisted account records and serialises writes per database."""

    def __init__(self, path: Path, *, busy_timeout: float = DEFAULT_BUSY_TIMEOUT) -> None:
        _ensure_directory(path)
        self._path = path
        self._busy_timeout = busy_timeout

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout,
            check_same_thread=False,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with closing(self._connect()) as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                    username TEXT NOT NULL,
                    password_hash TEXT NOT NULL,
                    email_verified_at TEXT,
                    otp TEXT,
                    otp_expires_at TEXT,
                    version INTEGER NOT NULL DEFAULT 0,
                    first_name TEXT,
                    last_name TEXT,
                    phone_number TEXT,
                    address TEXT,
                    referral_code TEXT,
                    created_at TEXT NOT NULL,
                    CHECK ((otp IS NULL) = (otp_expires_at IS NULL))
                );
                """
            )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def find_by_email(self, email: str) -> Optional[User]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (normalise_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get(self, user_id: int) -> Optional[User]:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create(self, record: NewUserRecord) -> User:
        """Insert a new account; the UNIQUE constraint makes check-and-insert atomic."""

        if not record.password_hash:
            raise ValueError("Password hash must not be empty")

        created_at = _current_timestamp()
        email = normalise_email(record.email)

        with closing(self._connect()) as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (
                        email,
                        username,
                        password_hash,
                        first_name,
                        last_name,
                        phone_number,
                        address,
                        referral_code,
                        created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        email,
                        record.username,
                        record.password_hash,
                        record.first_name,
                        record.last_name,
                        record.phone_number,
                        record.address,
                        record.referral_code,
                        _serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateEmailError("A user with that email already exists") from exc
            user_id = cursor.lastrowid

        user = self.get(user_id)
        if user is None:
            raise RuntimeError("Failed to load user after creation")
        return user

    def save(self, user: User) -> User:
        """Replace the mutable fields of ``user`` and return the stored record.

        The write only applies when the stored version still matches the one
        the caller read; otherwise :class:`StaleRecordError` is raised.
        """

        with closing(self._connect()) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                saved = self._save_with(conn, user)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        return saved

    @contextmanager
    def transaction(self, email: str) -> Iterator[UserTransaction]:
        """Open a locked unit of work for the account registered under ``email``."""

        with closing(self._connect()) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    "SELECT * FROM users WHERE email = ?",
                    (normalise_email(email),),
                ).fetchone()
                if row is None:
                    raise UserNotFoundError(f"No user registered for {normalise_email(email)}")
                yield UserTransaction(self, conn, self._row_to_user(row))
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _save_with(self, conn: sqlite3.Connection, user: User) -> User:
        cursor = conn.execute(
            _UPDATE_USER,
            (
                user.password_hash,
                _serialize_datetime(user.email_verified_at),
                user.otp,
                _serialize_datetime(user.otp_expires_at),
                user.id,
                user.version,
            ),
        )
        if cursor.rowcount == 0:
            exists = conn.execute("SELECT 1 FROM users WHERE id = ?", (user.id,)).fetchone()
            if exists is None:
                raise UserNotFoundError(f"User {user.id} no longer exists")
            raise StaleRecordError(f"User {user.id} was modified concurrently")

        row = conn.execute("SELECT * FROM users WHERE id = ?", (user.id,)).fetchone()
        return self._row_to_user(row)

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            email=str(row["email"]),
            username=str(row["username"]),
            password_hash=str(row["password_hash"]),
            created_at=_parse_datetime(str(row["created_at"])),
            email_verified_at=_parse_datetime(row["email_verified_at"]),
            otp=row["otp"],
            otp_expires_at=_parse_datetime(row["otp_expires_at"]),
            version=int(row["version"]),
            first_name=row["first_name"],
            last_name=row["last_name"],
            phone_number=row["phone_number"],
            address=row["address"],
            referral_code=row["referral_code"],
        )


__all__ = [
    "CredentialStore",
    "CredentialStoreError",
    "DuplicateEmailError",
    "StaleRecordError",
    "UserNotFoundError",
    "UserTransaction",
    "resolve_database_path",
]
