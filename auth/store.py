"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account is the mapper. Service and
route code never touches SQL directly.

Concurrency:
  Email uniqueness is a UNIQUE constraint, so two concurrent signups with the
  same email cannot both succeed -- the loser gets ConflictError from insert()
  instead of relying on a racy find-then-insert.

  Every mutation is a single UPDATE statement. Concurrent logins and a login
  racing a logout resolve as last-write-wins on session_token.

  mark_verified() is a conditional UPDATE keyed on both id and the current
  verification token, so a token can only be consumed once.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: auth/contactsauth.db unless Settings.database_url is set.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError
from auth.models import Account

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'contactsauth.db'}"

# Columns update_by_id() will write. id, email and created_at are immutable.
_MUTABLE_FIELDS = frozenset(
    {"password_hash", "subscription_tier", "avatar_url", "session_token", "verification_token", "is_verified"}
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("subscription_tier", String(30), nullable=False, server_default="starter"),
    Column("avatar_url", Text, nullable=False),
    Column("session_token", Text),  # NULL = logged out
    Column("verification_token", String(64), unique=True),  # NULL once verified
    Column("is_verified", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by writers."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore()
        account_id = store.insert(Account(email="a@x.com", password_hash=..., avatar_url=...))
        account = store.find_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def insert(self, account: Account) -> str:
        """Insert a new account and return its generated id.

        Raises ConflictError if the email is already registered. The check is
        the UNIQUE constraint itself, so it is atomic.
        """
        account_id = uuid.uuid4().hex
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _accounts.insert().values(
                        id=account_id,
                        email=account.email,
                        password_hash=account.password_hash,
                        subscription_tier=account.subscription_tier,
                        avatar_url=account.avatar_url,
                        session_token=account.session_token,
                        verification_token=account.verification_token,
                        is_verified=account.is_verified,
                        created_at=_now_iso(),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("Email in use") from exc
        return account_id

    def find_by_email(self, email: str) -> Account | None:
        """Look up an account by exact (already normalized) email."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_id(self, account_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_verification_token(self, token: str) -> Account | None:
        """Look up the unverified account holding this token. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.verification_token == token)).fetchone()
        return _row_to_account(row) if row is not None else None

    def update_by_id(self, account_id: str, **fields) -> bool:
        """Update mutable fields on an existing account.

        Unknown or immutable field names raise ValueError before any SQL runs.
        Returns True if a row was updated, False if account_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update account fields: {sorted(unknown)!r}")
        if not fields:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def mark_verified(self, account_id: str, token: str) -> bool:
        """Consume a verification token: set is_verified and clear the token.

        Only succeeds while the row still holds token, so of two concurrent
        verifications exactly one returns True.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.verification_token == token))
                .values(is_verified=True, verification_token=None)
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        subscription_tier=row.subscription_tier,
        avatar_url=row.avatar_url,
        session_token=row.session_token,
        verification_token=row.verification_token,
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
    )
