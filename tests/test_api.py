"""End-to-end tests for the account HTTP API."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from typing import List, Tuple

from fastapi.testclient import TestClient

from authcore.api import build_service, create_app
from authcore.config import AuthSettings
from authcore.models import OtpPurpose

EMAIL = "alice@example.com"
PASSWORD = "SuperSecret123!"


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, OtpPurpose]] = []

    def send_otp(self, address: str, code: str, purpose: OtpPurpose) -> None:
        self.sent.append((address, code, purpose))


class AccountApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tempdir = tempfile.TemporaryDirectory()
        self.settings = AuthSettings(
            database_path=Path(self._tempdir.name) / "authcore.sqlite3",
            session_secret="tests-secret-key",
        )
        self.notifier = RecordingNotifier()
        self.service = build_service(self.settings, notifier=self.notifier)
        self.client = TestClient(create_app(service=self.service))

    def tearDown(self) -> None:
        self.client.close()
        self._tempdir.cleanup()

    def _register(self, email: str = EMAIL):
        return self.client.post(
            "/auth/register",
            json={
                "email": email,
                "username": "alice",
                "password": PASSWORD,
                "password_confirmation": PASSWORD,
                "first_name": "Alice",
                "phone_number": "+15550100",
            },
        )

    def _last_code(self) -> str:
        return self.notifier.sent[-1][1]

    def test_healthcheck(self) -> None:
        response = self.client.get("/healthz")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_register_verify_and_login(self) -> None:
        registered = self._register()
        self.assertEqual(registered.status_code, 201, registered.text)
        payload = registered.json()
        self.assertTrue(payload["status"])
        self.assertEqual(payload["data"]["email"], EMAIL)
        self.assertIsNone(payload["data"]["email_verified_at"])
        self.assertNotIn("otp", payload["data"])
        self.assertNotIn("password_hash", payload["data"])

        verified = self.client.post("/auth/verify-otp", json={"email": EMAIL, "otp": self._last_code()})
        self.assertEqual(verified.status_code, 200, verified.text)
        self.assertEqual(verified.json()["message"], "Email verified successfully.")

        replay = self.client.post("/auth/verify-otp", json={"email": EMAIL, "otp": self._last_code()})
        self.assertEqual(replay.status_code, 400)
        self.assertFalse(replay.json()["status"])

        login = self.client.post("/auth/login", json={"email": EMAIL, "password": PASSWORD})
        self.assertEqual(login.status_code, 200, login.text)
        self.assertTrue(login.json()["token"])

    def test_duplicate_registration_is_rejected(self) -> None:
        self._register()
        sent = len(self.notifier.sent)

        duplicate = self._register(EMAIL.upper())

        self.assertEqual(duplicate.status_code, 422)
        self.assertFalse(duplicate.json()["status"])
        self.assertEqual(len(self.notifier.sent), sent)

    def test_register_validates_payload(self) -> None:
        mismatch = self.client.post(
            "/auth/register",
            json={
                "email": EMAIL,
                "username": "alice",
                "password": PASSWORD,
                "password_confirmation": "different-password",
            },
        )
        self.assertEqual(mismatch.status_code, 422)

        short = self.client.post(
            "/auth/register",
            json={
                "email": EMAIL,
                "username": "alice",
                "password": "short",
                "password_confirmation": "short",
            },
        )
        self.assertEqual(short.status_code, 422)

        bad_email = self.client.post(
            "/auth/register",
            json={
                "email": "no-at-sign",
                "username": "alice",
                "password": PASSWORD,
                "password_confirmation": PASSWORD,
            },
        )
        self.assertEqual(bad_email.status_code, 422)
        self.assertEqual(self.notifier.sent, [])

    def test_login_failures_share_one_response(self) -> None:
        self._register()

        wrong_password = self.client.post("/auth/login", json={"email": EMAIL, "password": "nope-nope"})
        unknown_email = self.client.post(
            "/auth/login", json={"email": "ghost@example.com", "password": PASSWORD}
        )

        self.assertEqual(wrong_password.status_code, 401)
        self.assertEqual(unknown_email.status_code, 401)
        self.assertEqual(wrong_password.json(), unknown_email.json())
        self.assertEqual(wrong_password.json()["token"], "")

    def test_verify_otp_requires_six_digits(self) -> None:
        self._register()
        for code in ("12345", "1234567", "12a456"):
            response = self.client.post("/auth/verify-otp", json={"email": EMAIL, "otp": code})
            self.assertEqual(response.status_code, 422, code)

    def test_verify_otp_for_unknown_email_matches_invalid_code(self) -> None:
        self._register()
        unknown = self.client.post("/auth/verify-otp", json={"email": "ghost@example.com", "otp": "123456"})
        wrong = self.client.post("/auth/verify-otp", json={"email": EMAIL, "otp": "000000"})

        self.assertEqual(unknown.status_code, 400)
        self.assertEqual(unknown.json(), wrong.json())

    def test_request_verification(self) -> None:
        self._register()

        response = self.client.post("/auth/request-verification", json={"email": EMAIL})
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(len(self.notifier.sent), 2)
        self.assertEqual(self.notifier.sent[-1][0], EMAIL)

        missing = self.client.post("/auth/request-verification", json={"email": "ghost@example.com"})
        self.assertEqual(missing.status_code, 404)

    def test_password_reset_flow(self) -> None:
        self._register()

        requested = self.client.post("/auth/request-password-reset", json={"email": EMAIL})
        self.assertEqual(requested.status_code, 200, requested.text)
        self.assertEqual(requested.json()["message"], "OTP sent for password reset.")
        address, code, purpose = self.notifier.sent[-1]
        self.assertEqual(address, EMAIL)
        self.assertIs(purpose, OtpPurpose.RESET_PASSWORD)

        mismatch = self.client.post(
            "/auth/reset-password",
            json={
                "email": EMAIL,
                "otp": code,
                "password": "newpass123",
                "password_confirmation": "newpass124",
            },
        )
        self.assertEqual(mismatch.status_code, 422)

        reset = self.client.post(
            "/auth/reset-password",
            json={
                "email": EMAIL,
                "otp": code,
                "password": "newpass123",
                "password_confirmation": "newpass123",
            },
        )
        self.assertEqual(reset.status_code, 200, reset.text)

        old = self.client.post("/auth/login", json={"email": EMAIL, "password": PASSWORD})
        self.assertEqual(old.status_code, 401)
        new = self.client.post("/auth/login", json={"email": EMAIL, "password": "newpass123"})
        self.assertEqual(new.status_code, 200)

        replay = self.client.post(
            "/auth/reset-password",
            json={
                "email": EMAIL,
                "otp": code,
                "password": "another123",
                "password_confirmation": "another123",
            },
        )
        self.assertEqual(replay.status_code, 400)

    def test_password_reset_for_unknown_email(self) -> None:
        response = self.client.post("/auth/request-password-reset", json={"email": "ghost@example.com"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["message"], "User not found.")


class UnverifiedLoginPolicyTests(unittest.TestCase):
    def test_unverified_login_is_forbidden_when_disabled(self) -> None:
        with tempfile.TemporaryDirectory() as tempdir:
            settings = AuthSettings(
                database_path=Path(tempdir) / "authcore.sqlite3",
                session_secret="tests-secret-key",
                allow_unverified_login=False,
            )
            notifier = RecordingNotifier()
            app = create_app(service=build_service(settings, notifier=notifier))

            with TestClient(app) as client:
                client.post(
                    "/auth/register",
                    json={
                        "email": EMAIL,
                        "username": "alice",
                        "password": PASSWORD,
                        "password_confirmation": PASSWORD,
                    },
                )
                blocked = client.post("/auth/login", json={"email": EMAIL, "password": PASSWORD})
                self.assertEqual(blocked.status_code, 403)

                client.post("/auth/verify-otp", json={"email": EMAIL, "otp": notifier.sent[-1][1]})
                allowed = client.post("/auth/login", json={"email": EMAIL, "password": PASSWORD})
                self.assertEqual(allowed.status_code, 200)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
