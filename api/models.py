"""
API request and response models for the account endpoints.

These Pydantic v2 models are the HTTP transport contract and double as the
fixed-schema input validator. They are separate from the Account dataclass in
auth/models.py, which owns the internal representation. Route handlers map
between the two.

Wire names follow the client contract (subscriptionTier, avatarURL); Python
attributes stay snake_case via aliases.
"""

from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from auth.models import Account, SubscriptionTier
from auth.tokens import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Shared validators
# ---------------------------------------------------------------------------


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


# Reused by every password field: min length plus the bcrypt byte limit.
_Password = Annotated[str, Field(min_length=6), AfterValidator(_check_password_bytes)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /signup. subscriptionTier is optional.

    Passwords are taken verbatim; email whitespace and case are normalized by
    the service.
    """

    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: _Password
    subscription_tier: Optional[SubscriptionTier] = Field(default=None, alias="subscriptionTier")


class LoginRequest(BaseModel):
    """Request body for POST /login."""

    email: str = Field(min_length=1, max_length=255)
    password: _Password


class VerificationEmailRequest(BaseModel):
    """Request body for POST /verify."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public projection of an Account. Never carries hashes or tokens."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    subscription_tier: str = Field(alias="subscriptionTier")

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(email=account.email, subscription_tier=account.subscription_tier)


class LoginResponse(BaseModel):
    token: str


class MessageResponse(BaseModel):
    message: str


class AvatarResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    avatar_url: str = Field(alias="avatarURL")


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str


class ErrorResponse(BaseModel):
    """Envelope for every non-2xx response."""

    status: int
    message: str
