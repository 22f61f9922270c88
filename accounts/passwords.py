"""
accounts/passwords.py -- Password hashing, password policy and email normalisation.

Passwords: bcrypt used directly (no passlib wrapper). The cost factor makes
     brute force expensive for low-entropy secrets; the work is CPU-bound and
     releases the GIL, so callers run it in worker threads (FastAPI sync
     routes) rather than on the event loop.

bcrypt only hashes the first 72 bytes of its input, and bcrypt 4.1+ refuses
longer input outright. validate_password() rejects such passwords up front so
the failure is a ValidationFailed, not a ValueError from deep inside hashpw.
"""

from __future__ import annotations

import re

import bcrypt

from core.errors import ValidationFailed
from core.models import EMAIL_PATTERN, PASSWORD_MAX_BYTES

_EMAIL_RE = re.compile(EMAIL_PATTERN)


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. Any error (malformed hash,
    over-long input) counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def validate_password(plain: str | None, min_length: int) -> str:
    """Return the password unchanged if it satisfies the policy, else raise ValidationFailed.

    Whitespace is significant and is not stripped.
    """
    if not plain:
        raise ValidationFailed("Password is required.")
    if len(plain) < min_length:
        raise ValidationFailed(f"Password must be at least {min_length} characters.")
    if len(plain.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationFailed(f"Password must be at most {PASSWORD_MAX_BYTES} bytes.")
    return plain


def normalize_email(raw_email: str | None) -> str:
    """Normalize an email string by stripping whitespace and lowering case."""
    return (raw_email or "").strip().lower()


def validate_email(raw_email: str | None) -> str:
    """Return the normalised email, or raise ValidationFailed if it is malformed."""
    email = normalize_email(raw_email)
    if not email or len(email) > 255 or not _EMAIL_RE.match(email):
        raise ValidationFailed("A valid email address is required.")
    return email
