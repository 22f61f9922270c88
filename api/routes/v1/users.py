"""
api/routes/v1/users.py -- Account lifecycle REST endpoints.

Routes:
  POST   /api/v1/users/signup                -- create account; returns session token (201)
  GET    /api/v1/users/confirmation/{token}  -- consume an email verification token
  POST   /api/v1/users/confirmation/resend   -- issue a fresh verification token (requires auth)
  POST   /api/v1/users/login                 -- password login; returns session token
  POST   /api/v1/users/otp/request           -- email a password reset code
  POST   /api/v1/users/otp/confirm           -- check the code; returns a reset grant
  POST   /api/v1/users/password/reset        -- set a new password with a reset grant
  PATCH  /api/v1/users/me/password           -- change password (requires auth)
  PATCH  /api/v1/users/me/email              -- change email (requires auth)
  POST   /api/v1/users/me/verify-password    -- re-check the current password (requires auth)
  GET    /api/v1/users/me                    -- current account (requires auth)
  GET    /api/v1/users/me/sessions           -- active sessions (requires auth)
  POST   /api/v1/users/logout                -- revoke the presented token (requires auth)
  POST   /api/v1/users/logout-all            -- revoke every session (requires auth)
  DELETE /api/v1/users/me                    -- delete the account (requires auth)

Security:
  Login and the OTP/reset endpoints are rate-limited per IP (LOGIN_RATE_LIMIT,
  OTP_RATE_LIMIT). Cache-Control: no-store on every response carrying a token.
  Handlers that hash or verify passwords are plain `def` so FastAPI runs them
  in its threadpool and bcrypt never blocks the event loop.

Component failures (core.errors.AccountError) are not caught here, except the
unknown-email Mismatch of otp/request. The exception handler in api/main.py
maps the rest to status codes.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response

from accounts.dependencies import CurrentSession, get_current_session, get_lifecycle
from accounts.lifecycle import AccountLifecycle
from accounts.tokens import create_reset_grant, decode_reset_grant, digests_match, password_fingerprint
from api.limiter import limiter
from api.models import (
    AccountResponse,
    AuthResponse,
    EmailChangeRequest,
    LoginRequest,
    MessageResponse,
    OtpConfirmRequest,
    OtpConfirmResponse,
    OtpRequest,
    PasswordChangeRequest,
    PasswordCheckRequest,
    PasswordResetRequest,
    SessionRow,
    SignupRequest,
)
from core.config import Settings, get_settings
from core.errors import Mismatch
from core.models import AuthResult

logger = logging.getLogger("workbridge.api.users")

# Auth policy:
# - signup, confirmation/{token}, login, otp/*, password/reset: public
# - everything under /users/me, confirmation/resend, logout, logout-all:
#   requires a bearer session token (get_current_session)
router = APIRouter()


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _otp_limit() -> str:
    return get_settings().otp_rate_limit


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _auth_response(result: AuthResult, response: Response) -> AuthResponse:
    response.headers["Cache-Control"] = "no-store"
    return AuthResponse(
        account=AccountResponse.from_account(result.account),
        token=result.token,
        chat_token=result.chat_token,
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/users/signup", response_model=AuthResponse, status_code=201)
def signup(
    body: SignupRequest,
    response: Response,
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> AuthResponse:
    """Create an account, send the verification email and sign the new account in.

    first_name/last_name win over same-named keys inside profile.
    """
    profile = {**body.profile, "first_name": body.first_name, "last_name": body.last_name}
    result = lifecycle.signup(body.email, body.password, body.account_type, profile)
    return _auth_response(result, response)


@router.get("/users/confirmation/{token}", response_model=MessageResponse)
def confirm_email(token: str, lifecycle: AccountLifecycle = Depends(get_lifecycle)) -> MessageResponse:
    lifecycle.confirm_email(token)
    return MessageResponse(message="The account has been verified.")


@router.post("/users/login", response_model=AuthResponse)
@limiter.limit(_login_limit)  # must be BELOW @router: the registered endpoint is the limited wrapper
def login(
    request: Request,
    body: LoginRequest,
    response: Response,
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> AuthResponse:
    """Exchange email and password for a session token.

    Wrong password and unknown email produce the same 401 body.
    """
    result = lifecycle.login(body.email, body.password)
    return _auth_response(result, response)


@router.post("/users/otp/request", response_model=MessageResponse)
@limiter.limit(_otp_limit)
def request_otp(
    request: Request,
    body: OtpRequest,
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> MessageResponse:
    """Email a reset code.

    An unknown address gets the same 200 body as a registered one.
    """
    try:
        lifecycle.request_otp(body.email)
    except Mismatch:
        logger.info("OTP requested for an unregistered address")
    return MessageResponse(message="OTP sent successfully")


@router.post("/users/otp/confirm", response_model=OtpConfirmResponse)
@limiter.limit(_otp_limit)
def confirm_otp(
    request: Request,
    body: OtpConfirmRequest,
    response: Response,
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> OtpConfirmResponse:
    """Check a reset code. On a match, return a reset grant for /users/password/reset.

    The grant is bound to the account's current password hash, so it stops
    working as soon as the password changes.
    """
    settings = _settings(request)
    account = lifecycle.confirm_otp(body.email, body.otp)
    grant = create_reset_grant(
        account.id,
        account.password_hash,
        settings.secret_key,
        settings.reset_grant_ttl_seconds,
    )
    response.headers["Cache-Control"] = "no-store"
    return OtpConfirmResponse(
        message="The code matched. Use the reset grant to set a new password.",
        reset_grant=grant,
        expires_in=settings.reset_grant_ttl_seconds,
    )


@router.post("/users/password/reset", response_model=MessageResponse)
@limiter.limit(_otp_limit)
def reset_password(
    request: Request,
    body: PasswordResetRequest,
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> MessageResponse:
    """Set a new password using a grant from /users/otp/confirm. Ends every session.

    Expired, forged, reused and foreign grants all get the same 401 Mismatch
    as an unknown email.
    """
    secret_key = _settings(request).secret_key
    decoded = decode_reset_grant(body.reset_grant, secret_key)
    account = lifecycle.vault.find_by_email(body.email)
    if decoded is None or account is None:
        raise Mismatch()
    grant_account_id, fingerprint = decoded
    if grant_account_id != account.id or not digests_match(
        password_fingerprint(secret_key, account.password_hash), fingerprint
    ):
        raise Mismatch()

    lifecycle.reset_password(body.email, body.password)
    logger.info("Password reset for account %d", account.id)
    return MessageResponse(message="Password changed. Please sign in again.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/users/confirmation/resend", response_model=MessageResponse)
def resend_confirmation(
    session: CurrentSession = Depends(get_current_session),
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> MessageResponse:
    lifecycle.resend_verification(session.account)
    return MessageResponse(message="A new confirmation email has been sent.")


@router.get("/users/me", response_model=AccountResponse)
def me(session: CurrentSession = Depends(get_current_session)) -> AccountResponse:
    return AccountResponse.from_account(session.account)


@router.get("/users/me/sessions", response_model=list[SessionRow])
def list_sessions(
    session: CurrentSession = Depends(get_current_session),
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> list[SessionRow]:
    return [
        SessionRow(id=s.id, created_at=s.created_at or "") for s in lifecycle.sessions.active_sessions(session.account.id)
    ]


@router.patch("/users/me/password", response_model=MessageResponse)
def change_password(
    body: PasswordChangeRequest,
    session: CurrentSession = Depends(get_current_session),
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> MessageResponse:
    """Change the password after re-checking the old one.

    Other sessions are revoked; whether the presented token survives depends
    on PASSWORD_CHANGE_SESSION_POLICY.
    """
    lifecycle.change_password(session.account, session.token, body.old_password, body.new_password)
    return MessageResponse(message="Password change success")


@router.patch("/users/me/email", response_model=AccountResponse)
def change_email(
    body: EmailChangeRequest,
    session: CurrentSession = Depends(get_current_session),
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> AccountResponse:
    account = lifecycle.change_email(session.account, body.password, body.email)
    return AccountResponse.from_account(account)


@router.post("/users/me/verify-password", response_model=MessageResponse)
def verify_password(
    body: PasswordCheckRequest,
    session: CurrentSession = Depends(get_current_session),
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> MessageResponse:
    lifecycle.verify_password(session.account, body.password)
    return MessageResponse(message="Correct password")


@router.post("/users/logout", response_model=MessageResponse)
def logout(
    session: CurrentSession = Depends(get_current_session),
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> MessageResponse:
    lifecycle.logout(session.token)
    return MessageResponse(message="Logged out.")


@router.post("/users/logout-all", response_model=MessageResponse)
def logout_all(
    session: CurrentSession = Depends(get_current_session),
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> MessageResponse:
    lifecycle.logout_all(session.account)
    return MessageResponse(message="Logged out of every session.")


@router.delete("/users/me", response_model=AccountResponse)
def delete_me(
    session: CurrentSession = Depends(get_current_session),
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> AccountResponse:
    """Delete the account with its sessions and tokens. Returns the deleted account."""
    lifecycle.delete_account(session.account)
    return AccountResponse.from_account(session.account)
