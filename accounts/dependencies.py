"""
accounts/dependencies.py -- FastAPI Depends() helpers for bearer-token authentication.

Clients send the session token issued at signup/login as
`Authorization: Bearer <token>`. The token is checked against the session
store on every request, so logout / logout-all / password changes take effect
immediately.

get_lifecycle() returns the orchestrator wired in the app lifespan.
get_current_session() raises HTTP 401 if the request is not authenticated.

Layer rule: no imports from api/.
  accounts/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request

from accounts.lifecycle import AccountLifecycle
from core.errors import InvalidToken
from core.models import Account


@dataclass
class CurrentSession:
    """The authenticated account plus the raw token that authenticated it."""

    account: Account
    token: str


def get_lifecycle(request: Request) -> AccountLifecycle:
    return request.app.state.lifecycle


def bearer_token(request: Request) -> Optional[str]:
    """Extract the bearer token from the Authorization header, or None."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_session(
    request: Request,
    lifecycle: AccountLifecycle = Depends(get_lifecycle),
) -> CurrentSession:
    """Require authentication. Raises HTTP 401 if the bearer token is missing or revoked.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(session: CurrentSession = Depends(get_current_session)): ...
    """
    token = bearer_token(request)
    try:
        account = lifecycle.sessions.validate(token)
    except InvalidToken:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    return CurrentSession(account=account, token=token)
