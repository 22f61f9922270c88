"""
accounts/otp.py -- OTP Reset Manager: short-lived numeric codes for password reset.

Lifecycle: None -> Pending -> {Confirmed | Expired | Cancelled}.

  request()  Pending is created under UNIQUE(account_id). A second request
             while one is live fails AlreadyPending -- the constraint is the
             rate limit, there is no timer. An expired record is cleared in the
             same transaction, so expiry needs no background sweeper.
  confirm()  Expired is decided lazily from issued_at. Wrong codes count
             against otp_max_attempts; reaching it deletes the record
             (Cancelled). A correct code deletes the record with a DELETE by
             id, so only one concurrent confirmation can succeed.

Codes are compared as HMAC digests with hmac.compare_digest.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.exc import IntegrityError

from accounts.store import AccountStore, to_iso
from accounts.tokens import digest, digests_match, generate_otp_code
from core.errors import AlreadyPending, Expired, Mismatch, NotFound
from core.models import OtpRecord

logger = logging.getLogger("workbridge.otp")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OtpResetManager:
    def __init__(
        self,
        store: AccountStore,
        secret_key: str,
        ttl_seconds: int = 300,
        code_length: int = 6,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._secret_key = secret_key
        self._ttl = timedelta(seconds=ttl_seconds)
        self._length = code_length
        self._max_attempts = max_attempts
        self._clock = clock

    def _hash(self, account_id: int, code: str) -> str:
        # Bound to the account so a digest cannot be replayed across accounts.
        return digest(self._secret_key, f"otp:{account_id}:{code}")

    def request(self, account_id: int) -> OtpRecord:
        """Issue a code for the account. The plaintext is on the returned record only."""
        now = self._clock()
        code = generate_otp_code(self._length)
        record = OtpRecord(
            account_id=account_id,
            issued_at=to_iso(now),
            code_hash=self._hash(account_id, code),
            code=code,
        )
        try:
            record.id = self._store.insert_otp(
                account_id,
                record.code_hash,
                issued_at=record.issued_at,
                stale_before=to_iso(now - self._ttl),
            )
        except IntegrityError as exc:
            raise AlreadyPending() from exc
        logger.info("OTP issued for account %d", account_id)
        return record

    def confirm(self, account_id: int, supplied_code: str) -> None:
        record = self._store.get_otp(account_id)
        if record is None:
            raise NotFound("No pending code for this account.")

        issued_at = datetime.fromisoformat(record.issued_at)
        if self._clock() > issued_at + self._ttl:
            self._store.delete_otp(record.id)
            raise Expired("OTP expired. Please try again.")

        if not digests_match(record.code_hash, self._hash(account_id, (supplied_code or "").strip())):
            if self._store.record_otp_failure(record.id, self._max_attempts):
                logger.warning("OTP for account %d cancelled after too many attempts", account_id)
            raise Mismatch("The verification code you entered isn't valid.")

        if not self._store.delete_otp(record.id):
            # Another request redeemed (or cancelled) it first.
            raise NotFound("No pending code for this account.")
        logger.info("OTP confirmed for account %d", account_id)

    def cancel(self, account_id: int) -> None:
        self._store.delete_otps(account_id)

    def purge_expired(self) -> int:
        return self._store.purge_otps(to_iso(self._clock() - self._ttl))
