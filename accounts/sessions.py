"""
accounts/sessions.py -- Session Token Manager: opaque bearer tokens, many per account.

Lifecycle per token: Issued -> Active -> Revoked. There is no expiry; revocation
is the only exit. Each token is one row in `sessions`, so concurrent logins and
logouts on the same account add and remove rows independently -- there is no
token list that could be overwritten with a stale copy.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError

from accounts.store import AccountStore
from accounts.tokens import digest, generate_token
from core.errors import InvalidToken, Transient
from core.models import Account, SessionRecord

logger = logging.getLogger("workbridge.sessions")

# A collision of 256-bit tokens means the generator is broken; a handful of
# retries distinguishes bad luck from that.
_MAX_ISSUE_ATTEMPTS = 5


class SessionTokenManager:
    def __init__(
        self,
        store: AccountStore,
        secret_key: str,
        token_factory: Callable[[], str] = generate_token,
    ) -> None:
        self._store = store
        self._secret_key = secret_key
        self._token_factory = token_factory

    def _hash(self, token: str) -> str:
        return digest(self._secret_key, f"session:{token}")

    def issue(self, account_id: int) -> str:
        """Create a new session for the account and return the raw bearer token.

        The raw token is returned exactly once; only its digest is stored.
        Global uniqueness is enforced by the UNIQUE index on token_hash: a
        collision is detected by the failed insert and a new token is drawn.
        """
        for _attempt in range(_MAX_ISSUE_ATTEMPTS):
            token = self._token_factory()
            try:
                self._store.insert_session(account_id, self._hash(token))
            except IntegrityError:
                logger.warning("Session token collision for account %d; regenerating", account_id)
                continue
            return token
        raise Transient("Could not allocate a unique session token.")

    def validate(self, token: Optional[str]) -> Account:
        if not token:
            raise InvalidToken()
        account = self._store.get_account_by_session(self._hash(token))
        if account is None:
            raise InvalidToken()
        return account

    def revoke(self, token: Optional[str]) -> None:
        """Revoke one token. Unknown or already-revoked tokens are a silent no-op."""
        if token:
            self._store.delete_session(self._hash(token))

    def revoke_all(self, account_id: int) -> int:
        removed = self._store.delete_sessions(account_id)
        logger.info("Revoked %d session(s) for account %d", removed, account_id)
        return removed

    def revoke_all_except(self, account_id: int, keep_token: str) -> int:
        """Revoke every session of the account except the one identified by keep_token."""
        removed = self._store.delete_sessions(account_id, keep_hash=self._hash(keep_token))
        logger.info("Revoked %d other session(s) for account %d", removed, account_id)
        return removed

    def active_sessions(self, account_id: int) -> list[SessionRecord]:
        """Return the account's live sessions, oldest first."""
        return self._store.list_sessions(account_id)
