"""
tests/test_cli.py -- Tests for the maintenance commands in main.py.

Runs main() against a SQLite file named by DATABASE_URL, so the commands go
through the same settings path an operator would use.
"""

from __future__ import annotations

import pytest

import main as cli
from accounts.store import AccountStore
from core.config import get_settings
from core.models import AccountType


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("SECRET_KEY", "cli-test-secret-key-at-least-32-chars")
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


def test_no_command_prints_help(capsys) -> None:
    assert cli.main([]) == 2
    assert "revoke-sessions" in capsys.readouterr().out


def test_purge(db_url: str, capsys) -> None:
    assert cli.main(["purge"]) == 0
    assert "Purged 0 OTP record(s) and 0 verification token(s)." in capsys.readouterr().out


def test_revoke_sessions(db_url: str, capsys) -> None:
    from accounts.lifecycle import build_lifecycle
    from accounts.notify import LogNotifier

    store = AccountStore(db_url)
    lifecycle = build_lifecycle(get_settings(), store, LogNotifier())
    signup = lifecycle.signup("cli@x.com", "password1", AccountType.employee)
    lifecycle.login("cli@x.com", "password1")

    assert cli.main(["revoke-sessions", "CLI@x.com"]) == 0
    assert "Revoked 2 session(s)" in capsys.readouterr().out
    assert store.list_sessions(signup.account.id) == []
    store.close()


def test_revoke_sessions_unknown_email(db_url: str, capsys) -> None:
    assert cli.main(["revoke-sessions", "ghost@x.com"]) == 1
    assert "No account registered" in capsys.readouterr().out
