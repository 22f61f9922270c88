"""
tests/test_config.py -- Unit tests for core/config.py.

Covers:
  - SECRET_KEY policy: required outside DEBUG, auto-generated in DEBUG, min length
  - defaults for the account policy knobs
  - environment variables override defaults
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings

KEY = "k" * 32


def test_secret_key_required_in_production() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_secret_key_generated_in_debug() -> None:
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32"):
        Settings(debug=False, secret_key="short")


def test_defaults(monkeypatch) -> None:
    # conftest lowers these for speed; check the shipped defaults.
    for name in ("BCRYPT_ROUNDS", "LOGIN_RATE_LIMIT", "OTP_RATE_LIMIT", "PURGE_INTERVAL_SECONDS"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings(secret_key=KEY)
    assert settings.bcrypt_rounds == 12
    assert settings.password_min_length == 8
    assert settings.otp_length == 6
    assert settings.otp_ttl_seconds == 300
    assert settings.password_change_session_policy == "revoke_all"
    assert settings.notifier_backend == "log"
    assert settings.purge_interval_seconds == 3600


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("OTP_LENGTH", "8")
    monkeypatch.setenv("PASSWORD_CHANGE_SESSION_POLICY", "keep_current")
    monkeypatch.setenv("ALLOWED_HOSTS", '["accounts.example.com"]')
    settings = Settings(secret_key=KEY)
    assert settings.otp_length == 8
    assert settings.password_change_session_policy == "keep_current"
    assert settings.allowed_hosts == ["accounts.example.com"]


@pytest.mark.parametrize("field,value", [("bcrypt_rounds", 3), ("otp_length", 3), ("otp_ttl_seconds", 0)])
def test_out_of_range_rejected(field: str, value: int) -> None:
    with pytest.raises(ValidationError):
        Settings(secret_key=KEY, **{field: value})
