"""
tests/test_verification.py -- Unit tests for accounts/verification.py.

Covers:
  - consume exactly once; replay gives AlreadyConsumed
  - 20 concurrent consumers of one token: one winner, 19 AlreadyConsumed
  - re-issue supersedes the pending token (old link -> NotFound)
  - lazy expiry through an injected clock; TTL 0 disables expiry
  - purge keeps consumed tokens so replays still report AlreadyConsumed
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from accounts.store import AccountStore
from accounts.vault import CredentialVault
from accounts.verification import VerificationTokenManager
from core.errors import AlreadyConsumed, Expired, NotFound
from core.models import AccountType, VerificationStatus

SECRET = "verification-test-secret-32-chars-min"


def _later(seconds: int):
    return lambda: datetime.now(timezone.utc) + timedelta(seconds=seconds)


@pytest.fixture
def verification(store: AccountStore) -> VerificationTokenManager:
    return VerificationTokenManager(store, SECRET, ttl_seconds=3600)


@pytest.fixture
def account_id(vault: CredentialVault) -> int:
    return vault.create_account("v@x.com", "password1", AccountType.employer).id


def test_consume_once(verification: VerificationTokenManager, account_id: int) -> None:
    token = verification.issue(account_id)
    assert verification.consume(token) == account_id
    with pytest.raises(AlreadyConsumed):
        verification.consume(token)


@pytest.mark.parametrize("token", [None, "", "never-issued"])
def test_unknown_token(verification: VerificationTokenManager, token) -> None:
    with pytest.raises(NotFound):
        verification.consume(token)


def test_twenty_concurrent_consumers(verification: VerificationTokenManager, account_id: int) -> None:
    token = verification.issue(account_id)
    barrier = threading.Barrier(20)
    outcomes: list[str] = []
    lock = threading.Lock()

    def consumer() -> None:
        barrier.wait()
        try:
            verification.consume(token)
            result = "won"
        except AlreadyConsumed:
            result = "already"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=consumer) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("won") == 1
    assert outcomes.count("already") == 19


def test_reissue_supersedes_pending(
    store: AccountStore, verification: VerificationTokenManager, account_id: int
) -> None:
    old = verification.issue(account_id)
    new = verification.issue(account_id)
    with pytest.raises(NotFound):
        verification.consume(old)
    assert verification.consume(new) == account_id


def test_expired_token(store: AccountStore, account_id: int) -> None:
    issuer = VerificationTokenManager(store, SECRET, ttl_seconds=60)
    token = issuer.issue(account_id)
    late = VerificationTokenManager(store, SECRET, ttl_seconds=60, clock=_later(120))
    with pytest.raises(Expired):
        late.consume(token)
    # Still consumable by a clock inside the window: expiry left the row untouched.
    assert issuer.consume(token) == account_id


def test_zero_ttl_never_expires(store: AccountStore, account_id: int) -> None:
    token = VerificationTokenManager(store, SECRET, ttl_seconds=0).issue(account_id)
    far_future = VerificationTokenManager(store, SECRET, ttl_seconds=0, clock=_later(10 * 365 * 86400))
    assert far_future.consume(token) == account_id


def test_purge_keeps_consumed(store: AccountStore, verification: VerificationTokenManager, account_id: int) -> None:
    first = verification.issue(account_id)  # superseded below
    second = verification.issue(account_id)
    assert verification.consume(second) == account_id

    assert verification.purge_expired() == 1
    with pytest.raises(NotFound):
        verification.consume(first)
    with pytest.raises(AlreadyConsumed):
        verification.consume(second)


def test_purge_removes_expired_pending(store: AccountStore, account_id: int) -> None:
    VerificationTokenManager(store, SECRET, ttl_seconds=60).issue(account_id)
    late = VerificationTokenManager(store, SECRET, ttl_seconds=60, clock=_later(120))
    assert late.purge_expired() == 1


def test_statuses_recorded(store: AccountStore, verification: VerificationTokenManager, account_id: int) -> None:
    token = verification.issue(account_id)
    verification.consume(token)
    record = store.get_verification_token(verification._hash(token))
    assert record is not None
    assert record.status is VerificationStatus.consumed
    assert record.consumed_at is not None
