"""
auth/tokens.py -- Password hashing, session JWTs and verification tokens.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). Bcrypt's cost factor makes
       brute force expensive for low-entropy secrets. The _DUMMY_HASH constant
       lets AccountService.login() run a full comparison even for unknown
       emails so response time does not reveal whether an account exists.

  JWT: python-jose with HS256. The signing key arrives through an immutable
       TokenConfig built once at startup and injected into TokenIssuer -- no
       module reads the key from ambient state. The payload carries only the
       account id, issue time, expiry and a random jti.

  Verification tokens: secrets.token_urlsafe(16) gives 128 bits of entropy in
       22 URL-safe characters, safe to embed in an emailed link.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.errors import InternalError
from core.config import Settings

logger = logging.getLogger("contactsauth.tokens")

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

# bcrypt only looks at the first 72 bytes and recent releases reject longer
# input outright. The API layer enforces this limit on every password field.
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises InternalError if bcrypt fails; hashing never fails silently.
    """
    try:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
    except (ValueError, TypeError) as exc:
        raise InternalError(f"password hashing failed: {exc}") from exc


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is a data problem, not a wrong password, so it
    raises InternalError instead of returning False.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError) as exc:
        raise InternalError(f"password comparison failed: {exc}") from exc


# Computed once at module load so the first login attempt is not measurably
# slower than later ones.
_DUMMY_HASH: str = hash_password("contactsauth_timing_dummy")


def verify_password_or_dummy(plain: str, hashed: str | None) -> bool:
    """Compare against hashed, or against _DUMMY_HASH when there is no account.

    Always runs bcrypt once. Returns False whenever hashed is None.
    """
    if hashed is None:
        verify_password(plain, _DUMMY_HASH)
        return False
    return verify_password(plain, hashed)


# ---------------------------------------------------------------------------
# Verification tokens
# ---------------------------------------------------------------------------


def generate_verification_token() -> str:
    """Return a random URL-safe one-time token for the email confirmation link."""
    return secrets.token_urlsafe(16)


# ---------------------------------------------------------------------------
# Session JWTs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenConfig:
    """Signing parameters for session tokens. Built once, never mutated."""

    secret_key: str
    algorithm: str = "HS256"
    expire_seconds: int = 3600

    def __post_init__(self) -> None:
        if not self.secret_key:
            raise ValueError("TokenConfig requires a non-empty secret_key.")
        if self.expire_seconds <= 0:
            raise ValueError("expire_seconds must be positive.")

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenConfig:
        return cls(secret_key=settings.secret_key, expire_seconds=settings.token_expire_seconds)


class TokenIssuer:
    """Signs and validates bearer session tokens.

    Tokens are self-contained: validate() needs no store lookup. Whether the
    session is still live (not logged out) is decided by the caller comparing
    the token with Account.session_token.
    """

    def __init__(self, config: TokenConfig) -> None:
        self._config = config

    @property
    def expire_seconds(self) -> int:
        return self._config.expire_seconds

    def issue(self, account_id: str) -> str:
        """Encode a signed JWT bound to account_id, expiring after expire_seconds."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": account_id,
            "iat": now,
            "exp": now + timedelta(seconds=self._config.expire_seconds),
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._config.secret_key, algorithm=self._config.algorithm)

    def validate(self, token: str) -> str | None:
        """Return the bound account id, or None on any failure.

        Bad signature, expiry, a foreign algorithm and a missing subject all
        collapse to None; the gate turns that into AuthError.
        """
        try:
            payload = jwt.decode(token, self._config.secret_key, algorithms=[self._config.algorithm])
        except JWTError:
            return None
        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            return None
        return subject
