"""
auth/service.py -- Account state machine and authorization gate.

Per account there are two orthogonal state pairs:

    Unverified --verify()--> Verified          (one way, no terminal state)
    LoggedOut  <--login()/logout()--> LoggedIn (session_token set / None)

A new account starts Unverified and LoggedOut. login() requires Verified.

Security properties:
  Anti-enumeration: login() reports an unknown email and a wrong password with
  the same AuthError message, and runs one bcrypt comparison in both cases
  so timing does not differ either.

  Logout invalidation: authorize() accepts a token only if its signature and
  expiry are valid AND it equals the account's stored session_token. A
  logged-out token is rejected even though its signature is still valid.

Error contract: every public method raises only auth.errors classes. Store
failures (SQLAlchemyError) are rewrapped as InternalError by _store_errors().

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import BinaryIO

from sqlalchemy.exc import SQLAlchemyError

from auth.avatars import AvatarPipeline, default_avatar_url
from auth.errors import AuthError, InternalError, NotFoundError, ValidationError
from auth.mailer import Mailer
from auth.models import Account, SubscriptionTier
from auth.store import AccountStore
from auth.tokens import TokenIssuer, generate_verification_token, hash_password, verify_password_or_dummy

logger = logging.getLogger("contactsauth.accounts")

# One message for both unknown email and wrong password.
BAD_CREDENTIALS = "Email or password is wrong"
NOT_VERIFIED = "Email not verified"
NO_TOKEN = "No token provided"
NOT_AUTHORIZED = "Not authorized"
USER_NOT_FOUND = "User not found"
ALREADY_VERIFIED = "Verification has already been passed"


def normalize_email(email: str) -> str:
    return email.strip().lower()


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Account store failure during %s", operation)
        raise InternalError(f"{operation}: {exc}") from exc


class AccountService:
    """Orchestrates signup, verification, login/logout, session lookup and avatars.

    Collaborators are injected so tests can swap any of them:
        store    -- AccountStore (persistence)
        tokens   -- TokenIssuer (session JWTs)
        mailer   -- anything with send_verification_email(to, token)
        avatars  -- AvatarPipeline
    """

    def __init__(
        self,
        store: AccountStore,
        tokens: TokenIssuer,
        mailer: Mailer,
        avatars: AvatarPipeline,
        default_subscription: str = SubscriptionTier.starter.value,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.mailer = mailer
        self.avatars = avatars
        self.default_subscription = default_subscription

    # ------------------------------------------------------------------
    # Signup and verification
    # ------------------------------------------------------------------

    def signup(self, email: str, password: str, subscription_tier: str | None = None) -> Account:
        """Register a new Unverified account and send its verification email.

        Raises ConflictError if the email is already registered.
        """
        email = normalize_email(email)
        account = Account(
            email=email,
            password_hash=hash_password(password),
            avatar_url=default_avatar_url(email),
            subscription_tier=subscription_tier or self.default_subscription,
            verification_token=generate_verification_token(),
        )
        with _store_errors("signup"):
            account.id = self.store.insert(account)
        logger.info("Account %s created for %s", account.id, email)
        self._send_verification(account)
        return account

    def verify(self, token: str) -> Account:
        """Consume a verification token and mark its account Verified.

        A token that was already consumed (or never existed) raises NotFoundError.
        """
        with _store_errors("verify"):
            account = self.store.find_by_verification_token(token)
            if account is None or not self.store.mark_verified(account.id, token):
                raise NotFoundError(USER_NOT_FOUND)
        account.is_verified = True
        account.verification_token = None
        logger.info("Account %s verified", account.id)
        return account

    def request_verification_email(self, email: str) -> None:
        """Re-send the pending verification token for an Unverified account."""
        with _store_errors("request_verification_email"):
            account = self.store.find_by_email(normalize_email(email))
        if account is None:
            raise NotFoundError(USER_NOT_FOUND)
        if account.is_verified:
            raise ValidationError(ALREADY_VERIFIED)
        if not account.verification_token:
            # Unverified accounts always carry a token; regenerate one if it went missing.
            token = generate_verification_token()
            with _store_errors("request_verification_email"):
                self.store.update_by_id(account.id, verification_token=token)
            account.verification_token = token
        self._send_verification(account)

    def _send_verification(self, account: Account) -> None:
        try:
            self.mailer.send_verification_email(account.email, account.verification_token)
        except Exception as e:  # noqa: BLE001
            logger.warning("Could not queue verification email for %s: %s", account.email, e)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> str:
        """Check credentials and verification, then issue and persist a session token."""
        with _store_errors("login"):
            account = self.store.find_by_email(normalize_email(email))
        stored_hash = account.password_hash if account is not None else None
        if not verify_password_or_dummy(password, stored_hash):
            raise AuthError(BAD_CREDENTIALS)
        if not account.is_verified:
            raise AuthError(NOT_VERIFIED)

        token = self.tokens.issue(account.id)
        with _store_errors("login"):
            if not self.store.update_by_id(account.id, session_token=token):
                raise InternalError(f"account {account.id} vanished during login")
        logger.info("Account %s logged in", account.id)
        return token

    def logout(self, account_id: str) -> None:
        with _store_errors("logout"):
            if not self.store.update_by_id(account_id, session_token=None):
                raise NotFoundError(USER_NOT_FOUND)
        logger.info("Account %s logged out", account_id)

    def authorize(self, token: str | None) -> Account:
        """Resolve a bearer token to its Account or raise AuthError."""
        if not token:
            raise AuthError(NO_TOKEN)
        account_id = self.tokens.validate(token)
        if account_id is None:
            raise AuthError(NOT_AUTHORIZED)
        with _store_errors("authorize"):
            account = self.store.find_by_id(account_id)
        if account is None or account.session_token != token:
            raise AuthError(NOT_AUTHORIZED)
        return account

    # ------------------------------------------------------------------
    # Avatar
    # ------------------------------------------------------------------

    def update_avatar(self, account_id: str, filename: str | None, stream: BinaryIO) -> str:
        """Ingest an uploaded image and point the account's avatar_url at it.

        The file write and the row update are not one transaction. If the row
        update fails the published file is left behind; that is logged and
        reported as InternalError.
        """
        path = self.avatars.ingest(account_id, filename, stream)
        try:
            updated = self.store.update_by_id(account_id, avatar_url=path)
        except SQLAlchemyError as exc:
            logger.exception("Avatar %s written but account %s update failed; file is orphaned", path, account_id)
            raise InternalError(f"avatar update for {account_id}: {exc}") from exc
        if not updated:
            logger.error("Avatar %s written for missing account %s; file is orphaned", path, account_id)
            raise InternalError(f"account {account_id} not found during avatar update")
        return path
