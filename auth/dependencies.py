"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one method is accepted: an "Authorization: Bearer <token>" header
carrying the session JWT issued by POST /login. Any other scheme counts as no
token at all.

get_current_account() raises AuthError (401 via the api/main.py handler) when
the request is not authenticated, and otherwise attaches the resolved Account
to request.state.account for downstream handlers.

Layer rule: auth/dependencies.py may import from fastapi because it is part of
the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import Account
from auth.service import AccountService


def bearer_token(request: Request) -> str | None:
    """Return the token from an "Authorization: Bearer ..." header, or None."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def get_current_account(request: Request) -> Account:
    """Require a live session. Raises AuthError if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: Account = Depends(get_current_account)): ...
    """
    service: AccountService = request.app.state.accounts
    account = service.authorize(bearer_token(request))
    request.state.account = account
    return account
