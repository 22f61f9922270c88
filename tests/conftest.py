"""
tests/conftest.py -- Shared test fixtures for WorkBridge Accounts tests.

This module provides:
  - RecordingNotifier: captures notifications instead of delivering them
  - store / notifier / lifecycle: component-level fixtures on a fresh SQLite file
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - api_client: module-scoped TestClient over the real FastAPI app

Design: file-backed SQLite under tmp_path rather than shared-cache in-memory
URIs. Shared-cache memory databases use table-level locks that fail at once
instead of waiting on the busy timeout, which breaks the concurrency tests.

Environment must be set before any core/api import: DEBUG lets get_settings()
auto-generate SECRET_KEY, BCRYPT_ROUNDS=4 keeps hashing fast, and the rate
limits are raised so one module-scoped client can run every route test.
"""

from __future__ import annotations

import asyncio
import os
import threading
from collections.abc import Generator
from contextlib import asynccontextmanager

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("OTP_RATE_LIMIT", "1000/minute")
os.environ.setdefault("PURGE_INTERVAL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient

from accounts.lifecycle import AccountLifecycle, build_lifecycle
from accounts.notify import NotificationKind
from accounts.otp import OtpResetManager
from accounts.sessions import SessionTokenManager
from accounts.store import AccountStore
from accounts.vault import CredentialVault
from accounts.verification import VerificationTokenManager
from api.main import app
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-chars"
TEST_ROUNDS = 4


class RecordingNotifier:
    """Notifier that keeps every message in memory for assertions."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, NotificationKind, dict]] = []
        self._lock = threading.Lock()

    def send(self, address: str, kind: NotificationKind, payload: dict) -> None:
        with self._lock:
            self.sent.append((address, kind, dict(payload)))

    def last(self, kind: NotificationKind, address: str | None = None) -> dict:
        """Return the payload of the most recent notification of `kind` (optionally to `address`)."""
        for sent_to, sent_kind, payload in reversed(self.sent):
            if sent_kind is kind and (address is None or sent_to == address):
                return payload
        raise AssertionError(f"no {kind.value} notification recorded")

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path) -> Generator[AccountStore, None, None]:
    s = AccountStore(f"sqlite:///{tmp_path / 'accounts.db'}")
    yield s
    s.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def vault(store: AccountStore) -> CredentialVault:
    return CredentialVault(store, bcrypt_rounds=TEST_ROUNDS, password_min_length=8)


def make_lifecycle(store: AccountStore, notifier, **kwargs) -> AccountLifecycle:
    """Build a lifecycle over `store` with fast hashing. kwargs go to AccountLifecycle."""
    return AccountLifecycle(
        vault=CredentialVault(store, bcrypt_rounds=TEST_ROUNDS),
        sessions=SessionTokenManager(store, TEST_SECRET),
        verification=VerificationTokenManager(store, TEST_SECRET),
        otp=OtpResetManager(store, TEST_SECRET),
        notifier=notifier,
        **kwargs,
    )


@pytest.fixture
def lifecycle(store: AccountStore, notifier: RecordingNotifier) -> AccountLifecycle:
    return make_lifecycle(store, notifier)


@pytest.fixture
def lifecycle_factory(store: AccountStore):
    """Return a callable building further lifecycles over the same store (other notifier or policy)."""

    def factory(notifier, **kwargs) -> AccountLifecycle:
        return make_lifecycle(store, notifier, **kwargs)

    return factory


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AccountStore, notifier: RecordingNotifier):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task exactly like the production lifespan does.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.settings = settings
        app.state.store = store
        app.state.notifier = notifier
        app.state.lifecycle = build_lifecycle(settings, store, notifier)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, RecordingNotifier], None, None]:
    """Yield (client, notifier) for API integration tests.

    Each test module gets its own database; tests inside a module use
    distinct email addresses so they do not interfere.
    """
    db_path = tmp_path_factory.mktemp("api") / "accounts.db"
    store = AccountStore(f"sqlite:///{db_path}")
    notifier = RecordingNotifier()

    app.router.lifespan_context = _patch_lifespan(store, notifier)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, notifier

    store.close()
