"""
accounts/lifecycle.py -- Account Lifecycle Orchestrator.

Composes the vault and the three token managers into the named use cases the
routing layer calls. Collaborators (notifier, chat-token minter) are passed
in at construction; nothing here reaches for a module-level singleton.

Error policy:
  Component failures propagate unchanged. The one translation is the
  enumeration guard: an unknown email on login, OTP request and password
  reset surfaces as Mismatch, and on OTP confirmation as NotFound (the same
  answer as "no code pending"), so no use case reveals whether an address is
  registered.

Notifications are fire-and-forget. A notifier that raises is logged and
ignored; it never turns a completed use case into a failure.
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

from accounts.notify import NotificationKind, Notifier
from accounts.otp import OtpResetManager
from accounts.sessions import SessionTokenManager
from accounts.store import AccountStore
from accounts.tokens import ChatTokenMinter, NullChatTokenMinter, build_chat_minter
from accounts.vault import CredentialVault
from accounts.verification import VerificationTokenManager
from core.config import Settings
from core.errors import AccountError, AlreadyVerified, Mismatch, NotFound
from core.models import Account, AccountType, AuthResult

logger = logging.getLogger("workbridge.lifecycle")


class AccountLifecycle:
    def __init__(
        self,
        vault: CredentialVault,
        sessions: SessionTokenManager,
        verification: VerificationTokenManager,
        otp: OtpResetManager,
        notifier: Notifier,
        chat_minter: Optional[ChatTokenMinter] = None,
        public_base_url: str = "http://localhost:8000",
        password_change_session_policy: Literal["revoke_all", "keep_current"] = "revoke_all",
        otp_ttl_minutes: int = 5,
    ) -> None:
        self.vault = vault
        self.sessions = sessions
        self.verification = verification
        self.otp = otp
        self._notifier = notifier
        self._chat_minter = chat_minter or NullChatTokenMinter()
        self._base_url = public_base_url.rstrip("/")
        self._session_policy = password_change_session_policy
        self._otp_ttl_minutes = otp_ttl_minutes

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _notify(self, address: str, kind: NotificationKind, payload: dict) -> None:
        try:
            self._notifier.send(address, kind, payload)
        except Exception:
            logger.exception("Notifier raised while sending %s; continuing", kind.value)

    def _confirmation_link(self, token: str) -> str:
        return f"{self._base_url}/api/v1/users/confirmation/{token}"

    def _send_verification(self, account: Account, token: str) -> None:
        self._notify(
            account.email,
            NotificationKind.verification,
            {"name": account.display_name, "token": token, "link": self._confirmation_link(token)},
        )

    def _authenticated(self, account: Account) -> AuthResult:
        token = self.sessions.issue(account.id)
        return AuthResult(account=account, token=token, chat_token=self._chat_minter.mint(account))

    # ------------------------------------------------------------------
    # Signup and email confirmation
    # ------------------------------------------------------------------

    def signup(
        self,
        email: str,
        password: str,
        account_type: AccountType | str,
        profile: Optional[dict] = None,
    ) -> AuthResult:
        account = self.vault.create_account(email, password, account_type, profile)
        try:
            verification_token = self.verification.issue(account.id)
            result = self._authenticated(account)
        except AccountError:
            # Roll the account back so a retried signup does not hit EmailTaken.
            logger.warning("Signup of account %d failed after creation; removing it", account.id)
            self.vault.delete_account(account.id)
            raise
        self._send_verification(account, verification_token)
        self._notify(account.email, NotificationKind.welcome, {"name": account.display_name})
        return result

    def confirm_email(self, token: str) -> Account:
        account_id = self.verification.consume(token)
        if not self.vault.set_verified(account_id):
            # Either verified already, or deleted between the two steps.
            self.vault.get(account_id)
            raise AlreadyVerified()
        return self.vault.get(account_id)

    def resend_verification(self, account: Account) -> None:
        if account.is_verified:
            raise AlreadyVerified()
        token = self.verification.issue(account.id)
        self._send_verification(account, token)

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> AuthResult:
        account = self.vault.verify_credentials(email, password)
        logger.info("Account %d logged in", account.id)
        return self._authenticated(account)

    def logout(self, token: str) -> None:
        self.sessions.revoke(token)

    def logout_all(self, account: Account) -> None:
        self.sessions.revoke_all(account.id)

    # ------------------------------------------------------------------
    # OTP password reset
    # ------------------------------------------------------------------

    def request_otp(self, email: str) -> None:
        account = self.vault.find_by_email(email)
        if account is None:
            raise Mismatch()
        record = self.otp.request(account.id)
        self._notify(account.email, NotificationKind.otp, {"code": record.code, "ttl_minutes": self._otp_ttl_minutes})

    def confirm_otp(self, email: str, code: str) -> Account:
        """Check the code. Returns the account on a match; does not change the password."""
        account = self.vault.find_by_email(email)
        if account is None:
            raise NotFound("No pending code for this account.")
        self.otp.confirm(account.id, code)
        return account

    def reset_password(self, email: str, new_password: str) -> None:
        """Set a new password and end every session.

        The caller vouches for the requester (a confirmed OTP); this method
        performs no proof-of-possession check of its own.
        """
        account = self.vault.find_by_email(email)
        if account is None:
            raise Mismatch()
        self.vault.change_password(account.id, new_password)
        self.sessions.revoke_all(account.id)
        # A code requested before the reset must not authorise another one.
        self.otp.cancel(account.id)

    # ------------------------------------------------------------------
    # Authenticated account maintenance
    # ------------------------------------------------------------------

    def verify_password(self, account: Account, password: str) -> None:
        self.vault.verify_credentials(account.email, password)

    def change_password(self, account: Account, current_token: str, old_password: str, new_password: str) -> None:
        self.vault.verify_credentials(account.email, old_password)
        self.vault.change_password(account.id, new_password)
        if self._session_policy == "keep_current":
            self.sessions.revoke_all_except(account.id, current_token)
        else:
            self.sessions.revoke_all(account.id)

    def change_email(self, account: Account, password: str, new_email: str) -> Account:
        self.vault.verify_credentials(account.email, password)
        return self.vault.change_email(account.id, new_email)

    def delete_account(self, account: Account) -> None:
        self.vault.delete_account(account.id)
        self._notify(account.email, NotificationKind.account_cancelled, {"name": account.display_name})

    # ------------------------------------------------------------------
    # Storage hygiene
    # ------------------------------------------------------------------

    def purge_expired(self) -> tuple[int, int]:
        """Delete expired OTP records and stale verification tokens. Returns (otp, verification) counts."""
        return self.otp.purge_expired(), self.verification.purge_expired()


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def build_lifecycle(settings: Settings, store: AccountStore, notifier: Notifier) -> AccountLifecycle:
    """Wire the components from settings. Used by the API lifespan and the CLI."""
    return AccountLifecycle(
        vault=CredentialVault(store, settings.bcrypt_rounds, settings.password_min_length),
        sessions=SessionTokenManager(store, settings.secret_key),
        verification=VerificationTokenManager(store, settings.secret_key, settings.verification_token_ttl_seconds),
        otp=OtpResetManager(
            store,
            settings.secret_key,
            ttl_seconds=settings.otp_ttl_seconds,
            code_length=settings.otp_length,
            max_attempts=settings.otp_max_attempts,
        ),
        notifier=notifier,
        chat_minter=build_chat_minter(settings.chat_secret_key),
        public_base_url=settings.public_base_url,
        password_change_session_policy=settings.password_change_session_policy,
        otp_ttl_minutes=max(1, settings.otp_ttl_seconds // 60),
    )
