"""
accounts/tokens.py -- Random secrets, keyed digests and signed JWTs.

Security design decisions:
  Opaque secrets: session tokens and verification tokens come from
       secrets.token_urlsafe(32), 256 bits of entropy. OTP codes come from
       secrets.randbelow, never from a counter or the clock.

  Digests: only HMAC-SHA256(SECRET_KEY, raw) is persisted. Deterministic
       digests keep lookups O(1) through a UNIQUE index, and an attacker who
       reads the DB cannot replay anything without also knowing SECRET_KEY.
       bcrypt's slowness is unnecessary for high-entropy values.

  JWTs (python-jose, HS256) are used where a token must be verifiable without
       a DB row:
         - reset grants: returned by OTP confirmation, authorise one password
           reset. Bound to the account id and to a fingerprint of the current
           password hash, so a grant dies as soon as the password changes.
         - chat tokens: handed to the external chat service on signup/login.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional, Protocol

from jose import JWTError, jwt

if TYPE_CHECKING:
    from core.models import Account

logger = logging.getLogger("workbridge.tokens")

_ALGORITHM = "HS256"
_RESET_PURPOSE = "password_reset"

# ---------------------------------------------------------------------------
# Random secrets and digests
# ---------------------------------------------------------------------------


def generate_token() -> str:
    """Return a URL-safe random token with 256 bits of entropy."""
    return secrets.token_urlsafe(32)


def generate_otp_code(length: int = 6) -> str:
    """Return a zero-padded numeric code drawn uniformly from [0, 10**length)."""
    return f"{secrets.randbelow(10**length):0{length}d}"


def digest(secret_key: str, raw: str) -> str:
    """Return HMAC-SHA256(secret_key, raw) as a hex string."""
    return hmac.new(secret_key.encode(), raw.encode(), hashlib.sha256).hexdigest()


def digests_match(expected: str, supplied: str) -> bool:
    """Constant-time comparison of two hex digests."""
    return hmac.compare_digest(expected.encode(), supplied.encode())


# ---------------------------------------------------------------------------
# Reset grants
# ---------------------------------------------------------------------------


def password_fingerprint(secret_key: str, password_hash: str) -> str:
    # A short keyed fingerprint is enough to detect "password changed since issue".
    return digest(secret_key, f"pwd:{password_hash}")[:32]


def create_reset_grant(account_id: int, password_hash: str, secret_key: str, ttl_seconds: int) -> str:
    """Encode a signed, short-lived grant allowing one password reset for account_id."""
    payload = {
        "sub": str(account_id),
        "purpose": _RESET_PURPOSE,
        "pwd": password_fingerprint(secret_key, password_hash),
        "exp": datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(payload, secret_key, algorithm=_ALGORITHM)


def decode_reset_grant(grant: str, secret_key: str) -> Optional[tuple[int, str]]:
    """Return (account_id, password fingerprint) or None on any failure.

    Expired, tampered, wrong-purpose and malformed grants all come back as
    None -- the route layer turns that into a single generic rejection.
    """
    try:
        payload = jwt.decode(grant, secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("purpose") != _RESET_PURPOSE or "pwd" not in payload:
        return None
    try:
        return int(payload["sub"]), str(payload["pwd"])
    except (KeyError, TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Chat tokens (external collaborator)
# ---------------------------------------------------------------------------


class ChatTokenMinter(Protocol):
    def mint(self, account: Account) -> Optional[str]: ...


class JwtChatTokenMinter:
    """Mint the user token the chat service expects: HS256 over {"user_id": "<id>"}."""

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key

    def mint(self, account: Account) -> Optional[str]:
        return jwt.encode({"user_id": str(account.id)}, self._secret_key, algorithm=_ALGORITHM)


class NullChatTokenMinter:
    """Used when no chat service is configured."""

    def mint(self, account: Account) -> Optional[str]:
        return None


def build_chat_minter(chat_secret_key: str) -> ChatTokenMinter:
    if chat_secret_key:
        return JwtChatTokenMinter(chat_secret_key)
    logger.info("CHAT_SECRET_KEY not set -- chat tokens disabled")
    return NullChatTokenMinter()
