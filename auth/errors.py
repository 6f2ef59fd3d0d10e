"""
auth/errors.py -- Error taxonomy for account operations.

Every failure a public account operation can report is one of these classes.
Each carries the HTTP status it maps to, so api/main.py needs a single
exception handler to turn any of them into a {status, message} response.

    AccountError (base)
    ├── ValidationError   400  bad or missing input, unreadable image
    ├── AuthError         401  bad credentials, unverified, missing/stale token
    ├── NotFoundError     404  unknown account or verification token
    ├── ConflictError     409  email already registered
    └── InternalError     500  store, filesystem or hashing failure

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AccountError(Exception):
    """Base class for all classified account errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    @property
    def public_message(self) -> str:
        """Message safe to return to the client."""
        return self.message


class ValidationError(AccountError):
    status_code = 400


class AuthError(AccountError):
    status_code = 401


class NotFoundError(AccountError):
    status_code = 404


class ConflictError(AccountError):
    status_code = 409


class InternalError(AccountError):
    """Store, filesystem or hashing failure.

    The constructor message is for logs only. Clients always see the generic
    public_message so internal details never leak.
    """

    status_code = 500

    @property
    def public_message(self) -> str:
        return "Internal server error"
