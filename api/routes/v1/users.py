"""
api/routes/v1/users.py -- Account REST endpoints.

Routes (mounted under /api/v1/users):
  POST  /signup          -- register; sends verification email; 201
  GET   /verify/{token}  -- consume a verification token
  POST  /verify          -- re-send the verification email
  POST  /login           -- password login; returns a bearer token
  GET   /logout          -- clear the session (requires auth)
  GET   /current         -- public projection of the caller (requires auth)
  PATCH /avatars         -- multipart upload, field "avatar" (requires auth)

Handlers stay thin: validation is the Pydantic request model, behaviour lives
in AccountService, and AccountError subclasses become {status, message}
responses in api/main.py.

Security:
  Cache-Control: no-store on login responses so tokens are not cached.
  Avatar processing runs in the worker thread pool and completes before the
  path is returned.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from api.models import (
    AccountResponse,
    AvatarResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    SignupRequest,
    VerificationEmailRequest,
)
from auth.dependencies import get_current_account
from auth.models import Account
from auth.service import AccountService

# Auth policy:
# - POST  /signup, GET /verify/{token}, POST /verify, POST /login: public
# - GET   /logout, GET /current, PATCH /avatars: require a live session (get_current_account)
router = APIRouter()


def _accounts(request: Request) -> AccountService:
    return request.app.state.accounts


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/signup", response_model=AccountResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> AccountResponse:
    """Register a new account. The verification link is emailed, never returned."""
    tier = body.subscription_tier.value if body.subscription_tier is not None else None
    account = _accounts(request).signup(body.email, body.password, tier)
    return AccountResponse.from_account(account)


@router.get("/verify/{token}", response_model=MessageResponse)
def verify(request: Request, token: str) -> MessageResponse:
    _accounts(request).verify(token)
    return MessageResponse(message="Verification successful")


@router.post("/verify", response_model=MessageResponse)
def request_verification(request: Request, body: VerificationEmailRequest) -> MessageResponse:
    _accounts(request).request_verification_email(body.email)
    return MessageResponse(message="Verification email sent")


@router.post("/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a bearer token.

    Unknown email and wrong password produce the same 401 body.
    """
    token = _accounts(request).login(body.email, body.password)
    resp = JSONResponse(status_code=200, content=LoginResponse(token=token).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/logout", response_model=MessageResponse)
def logout(request: Request, account: Account = Depends(get_current_account)) -> MessageResponse:
    _accounts(request).logout(account.id)
    return MessageResponse(message="Logout successful")


@router.get("/current", response_model=AccountResponse)
def current(account: Account = Depends(get_current_account)) -> AccountResponse:
    return AccountResponse.from_account(account)


@router.patch("/avatars", response_model=AvatarResponse)
async def update_avatar(
    request: Request,
    avatar: UploadFile = File(...),
    account: Account = Depends(get_current_account),
) -> AvatarResponse:
    """Replace the caller's avatar with a 250x250 rendition of the upload."""
    try:
        path = await run_in_threadpool(_accounts(request).update_avatar, account.id, avatar.filename, avatar.file)
    finally:
        await avatar.close()
    return AvatarResponse(avatar_url=path)
