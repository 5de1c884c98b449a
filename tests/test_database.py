from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from authcore.database import (
    CredentialStore,
    DuplicateEmailError,
    StaleRecordError,
    UserNotFoundError,
    resolve_database_path,
)
from authcore.models import NewUserRecord

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def store(tmp_path: Path) -> CredentialStore:
    db = CredentialStore(tmp_path / "authcore.sqlite3")
    db.initialize()
    return db


def _record(email: str = "Owner@Example.com") -> NewUserRecord:
    return NewUserRecord(
        email=email,
        username="owner",
        password_hash="pbkdf2-hash",
        first_name="Olivia",
        phone_number="+15550100",
    )


def test_create_and_find_by_email_case_insensitively(store: CredentialStore) -> None:
    user = store.create(_record())

    assert user.email == "owner@example.com"
    assert user.email_verified_at is None
    assert user.otp is None and user.otp_expires_at is None
    assert user.first_name == "Olivia"
    assert user.created_at.tzinfo is not None

    found = store.find_by_email("  OWNER@example.COM ")
    assert found == user
    assert store.get(user.id) == user
    assert store.find_by_email("missing@example.com") is None


def test_duplicate_email_is_rejected(store: CredentialStore) -> None:
    store.create(_record("dup@example.com"))
    with pytest.raises(DuplicateEmailError):
        store.create(_record("DUP@example.com"))


def test_save_replaces_mutable_fields_and_bumps_version(store: CredentialStore) -> None:
    user = store.create(_record())
    expires = NOW + timedelta(minutes=10)

    saved = store.save(user.with_changes(otp="123456", otp_expires_at=expires, password_hash="new"))

    assert saved.version == user.version + 1
    assert saved.otp == "123456"
    assert saved.otp_expires_at == expires
    assert saved.password_hash == "new"
    assert store.find_by_email(user.email) == saved


def test_save_based_on_stale_read_is_rejected(store: CredentialStore) -> None:
    user = store.create(_record())
    first_read = store.find_by_email(user.email)
    second_read = store.find_by_email(user.email)

    store.save(first_read.with_changes(otp="111111", otp_expires_at=NOW))
    with pytest.raises(StaleRecordError):
        store.save(second_read.with_changes(otp="222222", otp_expires_at=NOW))

    assert store.find_by_email(user.email).otp == "111111"


def test_save_unknown_user_raises(store: CredentialStore) -> None:
    user = store.create(_record())
    with pytest.raises(UserNotFoundError):
        store.save(user.with_changes(id=user.id + 100))


def test_verification_timestamp_is_never_cleared(store: CredentialStore) -> None:
    user = store.create(_record())
    verified = store.save(user.with_changes(email_verified_at=NOW))

    after = store.save(verified.with_changes(email_verified_at=None))

    assert after.email_verified_at == NOW


def test_transaction_commits_saved_changes(store: CredentialStore) -> None:
    user = store.create(_record())

    with store.transaction("OWNER@example.com") as tx:
        assert tx.user == user
        tx.save(tx.user.with_changes(otp="654321", otp_expires_at=NOW))
        assert tx.user.version == user.version + 1

    assert store.find_by_email(user.email).otp == "654321"


def test_transaction_rolls_back_on_error(store: CredentialStore) -> None:
    user = store.create(_record())

    with pytest.raises(RuntimeError):
        with store.transaction(user.email) as tx:
            tx.save(tx.user.with_changes(otp="654321", otp_expires_at=NOW))
            raise RuntimeError("boom")

    assert store.find_by_email(user.email) == user


def test_transaction_for_unknown_email_raises(store: CredentialStore) -> None:
    with pytest.raises(UserNotFoundError):
        with store.transaction("nobody@example.com"):
            pass


def test_transaction_only_saves_its_own_record(store: CredentialStore) -> None:
    first = store.create(_record("first@example.com"))
    second = store.create(_record("second@example.com"))

    with pytest.raises(ValueError):
        with store.transaction(first.email) as tx:
            tx.save(second)


def test_resolve_database_path(tmp_path: Path) -> None:
    explicit = resolve_database_path(str(tmp_path / "custom.sqlite3"))
    assert explicit == (tmp_path / "custom.sqlite3").resolve()

    default = resolve_database_path(None)
    assert default.name == "authcore.sqlite3"
    assert default.parent.name == "data"
