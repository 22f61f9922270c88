"""
core/errors.py -- Typed failures raised by the account components.

Every component-level operation either returns its value or raises one of the
AccountError subclasses below. The orchestrator propagates them unchanged
(apart from folding "unknown email" into Mismatch), and the HTTP layer maps
`code` to a status in a single exception handler.

Only Transient is safe to retry; every other failure is terminal for the
request that produced it.
"""

from __future__ import annotations


class AccountError(Exception):
    """Base class. `code` is the machine-readable name used in API responses."""

    code = "account_error"
    message = "Account operation failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)


class ValidationFailed(AccountError):
    code = "validation_failed"
    message = "The supplied values are not acceptable."


class EmailTaken(AccountError):
    code = "email_taken"
    message = "An account with that email address already exists."


class NotFound(AccountError):
    code = "not_found"
    message = "Nothing matched the request."


class Mismatch(AccountError):
    # One message for wrong password, unknown email and wrong OTP so callers
    # cannot tell which part was wrong.
    code = "mismatch"
    message = "Credentials did not match."


class InvalidToken(AccountError):
    code = "invalid_token"
    message = "The session token is not valid."


class AlreadyConsumed(AccountError):
    code = "already_consumed"
    message = "This token has already been used."


class AlreadyVerified(AccountError):
    code = "already_verified"
    message = "This account is already verified."


class AlreadyPending(AccountError):
    code = "already_pending"
    message = "A code was already requested. Please try again once it expires."


class Expired(AccountError):
    code = "expired"
    message = "The code or token has expired. Please request a new one."


class Transient(AccountError):
    code = "transient"
    message = "The service is temporarily unavailable. Please retry."
