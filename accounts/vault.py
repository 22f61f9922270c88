"""
accounts/vault.py -- Credential Vault: account records, password hashing and verification.

The vault is the only component that sees plaintext passwords. It hashes them
with bcrypt before anything is persisted and never logs them.

Enumeration resistance [C1]:
  verify_credentials() raises the same Mismatch for an unknown email and a
  wrong password, and runs exactly one bcrypt check either way (against a
  per-vault dummy hash when the email is unknown) so response time does not
  reveal whether an address is registered.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from accounts.passwords import hash_password, normalize_email, validate_email, validate_password, verify_password
from accounts.store import AccountStore
from core.errors import EmailTaken, Mismatch, NotFound, ValidationFailed
from core.models import Account, AccountType

logger = logging.getLogger("workbridge.vault")


class CredentialVault:
    def __init__(self, store: AccountStore, bcrypt_rounds: int = 12, password_min_length: int = 8) -> None:
        self._store = store
        self._rounds = bcrypt_rounds
        self._min_length = password_min_length
        # Same cost factor as real hashes, or the timing equalisation is pointless.
        self._dummy_hash = hash_password("workbridge_timing_dummy", bcrypt_rounds)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, account_id: int) -> Account:
        account = self._store.get_account(account_id)
        if account is None:
            raise NotFound("Account not found.")
        return account

    def find_by_email(self, email: str) -> Optional[Account]:
        """Return the account for email, or None. Callers must not leak the difference."""
        return self._store.get_account_by_email(normalize_email(email))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_account(
        self,
        email: str,
        password: str,
        account_type: AccountType | str,
        profile_fields: Optional[dict] = None,
    ) -> Account:
        """Validate, hash and persist a new unverified account.

        Uniqueness is decided by the UNIQUE index on accounts.email, so two
        concurrent signups for the same address cannot both succeed.
        """
        normalized = validate_email(email)
        validate_password(password, self._min_length)
        try:
            kind = AccountType(account_type)
        except ValueError as exc:
            raise ValidationFailed("Account type must be one of: employer, employee.") from exc

        fields = dict(profile_fields or {})
        account = Account(
            email=normalized,
            password_hash=hash_password(password, self._rounds),
            account_type=kind,
            first_name=str(fields.pop("first_name", "") or "").strip(),
            last_name=str(fields.pop("last_name", "") or "").strip(),
            profile=fields,
        )
        try:
            account_id = self._store.create_account(account)
        except IntegrityError as exc:
            raise EmailTaken() from exc

        logger.info("Account %d created (type=%s)", account_id, kind.value)
        return self.get(account_id)

    def verify_credentials(self, email: str, password: str) -> Account:
        account = self._store.get_account_by_email(normalize_email(email))
        if account is None:
            # Equalize timing -- do NOT return early before running bcrypt.
            verify_password(password or "", self._dummy_hash)
            raise Mismatch()
        if not verify_password(password or "", account.password_hash):
            raise Mismatch()
        return account

    def change_password(self, account_id: int, new_password: str) -> None:
        validate_password(new_password, self._min_length)
        updated = self._store.update_account(account_id, password_hash=hash_password(new_password, self._rounds))
        if not updated:
            raise NotFound("Account not found.")
        logger.info("Password changed for account %d", account_id)

    def change_email(self, account_id: int, new_email: str) -> Account:
        normalized = validate_email(new_email)
        try:
            updated = self._store.update_account(account_id, email=normalized)
        except IntegrityError as exc:
            raise EmailTaken("Email address already in use by another account.") from exc
        if not updated:
            raise NotFound("Account not found.")
        logger.info("Email changed for account %d", account_id)
        return self.get(account_id)

    def set_verified(self, account_id: int) -> bool:
        """Mark the account verified. Idempotent; returns True only if this call flipped the flag."""
        flipped = self._store.mark_verified(account_id)
        if flipped:
            logger.info("Account %d verified", account_id)
        return flipped

    def delete_account(self, account_id: int) -> None:
        """Delete the account; its sessions, verification tokens and OTP record go with it."""
        if not self._store.delete_account(account_id):
            raise NotFound("Account not found.")
        logger.info("Account %d deleted", account_id)
