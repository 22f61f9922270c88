"""
API request and response models for the WorkBridge Accounts REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in core/models.py, which own the
internal domain representation. Route handlers map between the two.

Passwords are never whitespace-stripped: str_strip_whitespace is only enabled
on models without a password field.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models import Account, AccountType

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/users/signup.

    profile carries the free-form profile fields of the account type
    (company name, phone, skills, ...). They are stored as-is.
    """

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(max_length=255)
    account_type: AccountType
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    profile: dict[str, Optional[str | int | float | bool]] = Field(default_factory=dict)


class LoginRequest(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(max_length=255)


class OtpRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255)


class OtpConfirmRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255)
    otp: str = Field(pattern=r"^\d{4,10}$")


class PasswordResetRequest(BaseModel):
    """Request body for POST /api/v1/users/password/reset.

    reset_grant is the value returned by POST /users/otp/confirm.
    """

    email: str = Field(max_length=255)
    password: str = Field(max_length=255)
    reset_grant: str = Field(min_length=1, max_length=2048)


class PasswordChangeRequest(BaseModel):
    old_password: str = Field(max_length=255)
    new_password: str = Field(max_length=255)


class EmailChangeRequest(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(max_length=255)


class PasswordCheckRequest(BaseModel):
    password: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. The password hash never leaves the service."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    account_type: AccountType
    is_verified: bool
    first_name: str
    last_name: str
    profile: dict
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            email=account.email,
            account_type=account.account_type,
            is_verified=account.is_verified,
            first_name=account.first_name,
            last_name=account.last_name,
            profile=account.profile,
            created_at=account.created_at or "",
        )


class AuthResponse(BaseModel):
    """Response for signup and login."""

    model_config = ConfigDict(frozen=True)

    account: AccountResponse
    token: str
    token_type: str = "bearer"
    chat_token: Optional[str] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class OtpConfirmResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    reset_grant: str
    expires_in: int


class SessionRow(BaseModel):
    """One active session. The token itself is never listed."""

    model_config = ConfigDict(frozen=True)

    id: int
    created_at: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
