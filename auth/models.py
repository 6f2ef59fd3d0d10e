"""
auth/models.py -- Domain dataclass for the Account entity.

Pattern: Data class (pure data container, zero logic). Stores and services
do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SubscriptionTier(str, Enum):
    starter = "starter"
    pro = "pro"
    business = "business"


@dataclass
class Account:
    """A registered identity in the contacts service.

    is_verified is the only verification signal. verification_token is None
    once verification succeeds, but an empty token never implies verified.

    session_token holds the JWT issued at the last login and is None after
    logout. The authorization gate accepts a bearer token only while it still
    equals this value.
    """

    email: str
    password_hash: str
    avatar_url: str
    id: str | None = None
    subscription_tier: str = SubscriptionTier.starter.value
    session_token: str | None = None
    verification_token: str | None = None
    is_verified: bool = False
    created_at: str | None = None
