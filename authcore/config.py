"""Configuration loading for the account service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .database import resolve_database_path
from .notifier import SMTPSettings
from .otp import DEFAULT_OTP_TTL

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(raw: object, *, name: str) -> bool:
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {raw!r}")


@dataclass(frozen=True)
class AuthSettings:
    """Runtime settings for the account service and its HTTP boundary."""

    database_path: Path
    session_secret: str
    otp_ttl: timedelta = DEFAULT_OTP_TTL
    allow_unverified_login: bool = True
    password_min_length: int = 8
    smtp: Optional[SMTPSettings] = None

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "AuthSettings":
        """Create :class:`AuthSettings` from raw dictionary data."""

        secret = data.get("session_secret")
        if not secret:
            raise ValueError("Missing required configuration field: session_secret")

        raw_db_path = data.get("database_path")
        if raw_db_path:
            db_path = Path(str(raw_db_path)).expanduser()
            if not db_path.is_absolute() and base_path is not None:
                db_path = base_path / db_path
            database_path = db_path.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        otp_minutes = int(data.get("otp_ttl_minutes", DEFAULT_OTP_TTL.total_seconds() // 60))
        if otp_minutes <= 0:
            raise ValueError("otp_ttl_minutes must be positive")

        min_length = int(data.get("password_min_length", 8))
        if min_length < 1:
            raise ValueError("password_min_length must be at least 1")

        smtp_raw = data.get("smtp")
        smtp = None
        if isinstance(smtp_raw, Mapping) and smtp_raw.get("host"):
            smtp = SMTPSettings(
                host=str(smtp_raw["host"]),
                port=int(smtp_raw.get("port", 587)),
                username=str(smtp_raw["username"]) if smtp_raw.get("username") else None,
                password=str(smtp_raw["password"]) if smtp_raw.get("password") else None,
                use_tls=_parse_bool(smtp_raw.get("use_tls", True), name="smtp.use_tls"),
                sender=str(smtp_raw.get("sender") or smtp_raw.get("username") or "no-reply@example.com"),
            )

        return AuthSettings(
            database_path=database_path,
            session_secret=str(secret),
            otp_ttl=timedelta(minutes=otp_minutes),
            allow_unverified_login=_parse_bool(
                data.get("allow_unverified_login", True), name="allow_unverified_login"
            ),
            password_min_length=min_length,
            smtp=smtp,
        )


def _environment_overrides(environ: Mapping[str, str]) -> Dict[str, object]:
    overrides: Dict[str, object] = {}
    simple = {
        "AUTHCORE_DB_PATH": "database_path",
        "AUTHCORE_SESSION_SECRET": "session_secret",
        "AUTHCORE_OTP_TTL_MINUTES": "otp_ttl_minutes",
        "AUTHCORE_ALLOW_UNVERIFIED_LOGIN": "allow_unverified_login",
        "AUTHCORE_PASSWORD_MIN_LENGTH": "password_min_length",
    }
    for env_name, key in simple.items():
        value = environ.get(env_name)
        if value is not None and value.strip():
            overrides[key] = value.strip()

    smtp: Dict[str, object] = {}
    for env_name, key in {
        "AUTHCORE_SMTP_HOST": "host",
        "AUTHCORE_SMTP_PORT": "port",
        "AUTHCORE_SMTP_USERNAME": "username",
        "AUTHCORE_SMTP_PASSWORD": "password",
        "AUTHCORE_SMTP_USE_TLS": "use_tls",
        "AUTHCORE_SMTP_SENDER": "sender",
    }.items():
        value = environ.get(env_name)
        if value is not None and value.strip():
            smtp[key] = value.strip()
    if smtp:
        overrides["smtp"] = smtp
    return overrides


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AuthSettings:
    """Load settings from an optional YAML file, then apply environment overrides."""

    env = os.environ if environ is None else environ
    if config_path is None and env.get("AUTHCORE_CONFIG"):
        config_path = Path(env["AUTHCORE_CONFIG"]).expanduser()

    raw: Dict[str, object] = {}
    base_path: Path | None = None
    if config_path is not None:
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")
        raw.update(loaded)
        base_path = config_path.parent

    overrides = _environment_overrides(env)
    smtp_override = overrides.pop("smtp", None)
    raw.update(overrides)
    if smtp_override:
        merged = dict(raw.get("smtp") or {})
        merged.update(smtp_override)
        raw["smtp"] = merged

    return AuthSettings.from_dict(raw, base_path=base_path)


__all__ = ["AuthSettings", "load_settings"]
