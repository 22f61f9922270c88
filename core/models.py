"""
core/models.py -- Domain dataclasses for accounts and their credential artifacts.

Pure data containers. The store maps rows into these; the components in
accounts/ do the work. Raw secrets (session tokens, verification tokens, OTP
codes) never appear on a persisted record -- only their digests are stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
# Deliverability is proven by the confirmation link, not by the regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt only looks at the first 72 bytes of its input.
PASSWORD_MAX_BYTES = 72


class AccountType(str, Enum):
    employer = "employer"
    employee = "employee"


class VerificationStatus(str, Enum):
    pending = "pending"
    consumed = "consumed"
    superseded = "superseded"


@dataclass
class Account:
    """A user's credential record.

    email is always stored normalised (stripped, lower-cased) so the UNIQUE
    index on it is a case-insensitive uniqueness guarantee.
    """

    email: str
    password_hash: str
    account_type: AccountType
    id: Optional[int] = None
    is_verified: bool = False
    first_name: str = ""
    last_name: str = ""
    profile: dict = field(default_factory=dict)
    created_at: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email


@dataclass
class SessionRecord:
    account_id: int
    id: Optional[int] = None  # monotonic: issuance order
    created_at: Optional[str] = None


@dataclass
class VerificationToken:
    account_id: int
    status: VerificationStatus = VerificationStatus.pending
    id: Optional[int] = None
    created_at: Optional[str] = None
    consumed_at: Optional[str] = None


@dataclass
class OtpRecord:
    account_id: int
    issued_at: str
    code_hash: str = ""  # HMAC digest of the code
    id: Optional[int] = None
    attempts: int = 0
    code: Optional[str] = None  # only populated on the record returned by request()


@dataclass
class AuthResult:
    """Outcome of signup and login: the account plus its fresh bearer token."""

    account: Account
    token: str
    chat_token: Optional[str] = None
