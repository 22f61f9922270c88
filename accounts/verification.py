"""
accounts/verification.py -- Verification Token Manager: one-shot email confirmation tokens.

Lifecycle: Pending -> Consumed, or Pending -> Superseded when a new token is
issued for the same account. At most one token per account is pending.

consume() is a single conditional UPDATE; the row count tells the caller
whether it won. Twenty concurrent confirmations of one link therefore yield
one success and nineteen AlreadyConsumed, whatever the interleaving.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError

from accounts.store import AccountStore, to_iso
from accounts.tokens import digest, generate_token
from core.errors import AlreadyConsumed, Expired, NotFound, Transient
from core.models import VerificationStatus

logger = logging.getLogger("workbridge.verification")

_MAX_ISSUE_ATTEMPTS = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationTokenManager:
    def __init__(
        self,
        store: AccountStore,
        secret_key: str,
        ttl_seconds: int = 86400,
        clock: Callable[[], datetime] = _utcnow,
        token_factory: Callable[[], str] = generate_token,
    ) -> None:
        self._store = store
        self._secret_key = secret_key
        self._ttl = ttl_seconds
        self._clock = clock
        self._token_factory = token_factory

    def _hash(self, token: str) -> str:
        return digest(self._secret_key, f"verify:{token}")

    def _cutoff(self) -> Optional[str]:
        # Tokens issued before the cutoff are expired; None means no expiry.
        if not self._ttl:
            return None
        return to_iso(self._clock() - timedelta(seconds=self._ttl))

    def issue(self, account_id: int) -> str:
        """Issue a fresh token for the account, superseding any pending one."""
        for _attempt in range(_MAX_ISSUE_ATTEMPTS):
            token = self._token_factory()
            try:
                self._store.replace_verification_token(account_id, self._hash(token))
            except IntegrityError:
                logger.warning("Verification token collision for account %d; regenerating", account_id)
                continue
            return token
        raise Transient("Could not allocate a unique verification token.")

    def consume(self, token: Optional[str]) -> int:
        """Consume the token exactly once and return the account it belongs to."""
        if not token:
            raise NotFound("Verification token not found.")
        token_hash = self._hash(token)
        won = self._store.consume_verification_token(token_hash, issued_after=self._cutoff())
        record = self._store.get_verification_token(token_hash)
        if record is None:
            raise NotFound("Verification token not found.")
        if won:
            return record.account_id
        if record.status == VerificationStatus.consumed:
            raise AlreadyConsumed()
        if record.status == VerificationStatus.superseded:
            # A newer link was sent; the old one is simply no longer valid.
            raise NotFound("Verification token not found.")
        raise Expired("This confirmation link has expired. Please request a new one.")

    def purge_expired(self) -> int:
        return self._store.purge_verification_tokens(self._cutoff())
