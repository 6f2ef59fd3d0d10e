"""
tests/conftest.py -- Shared test fixtures for the account service.

This module provides:
  - RecordingMailer: stands in for the SendGrid mailer and keeps every message
  - make_service(): an AccountService over an isolated store and temp dirs
  - service: function-scoped AccountService for unit tests
  - api_client: TestClient over the real app with a patched lifespan

Design: the API store uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit tests run on one thread, so plain :memory: is enough there.

The DEBUG env var must be set before any core/auth import so get_settings()
never refuses to start for lack of a SECRET_KEY.
"""

from __future__ import annotations

import io
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from pathlib import Path

# Set before any app import so get_settings() runs in dev mode.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from api.main import app
from auth.avatars import AvatarPipeline
from auth.service import AccountService
from auth.store import AccountStore
from auth.tokens import TokenConfig, TokenIssuer

TEST_SECRET = "unit-test-signing-key-0123456789abcdef"


class RecordingMailer:
    """Mailer double: records (to, token) pairs instead of sending mail."""

    mode = "recording"

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send_verification_email(self, to: str, token: str) -> None:
        self.sent.append((to, token))

    def token_for(self, email: str) -> str:
        """Return the most recent verification token mailed to email."""
        for to, token in reversed(self.sent):
            if to == email:
                return token
        raise AssertionError(f"no verification email sent to {email}")

    def close(self) -> None:
        pass


def make_service(db_url: str, root: Path) -> AccountService:
    return AccountService(
        store=AccountStore(db_url=db_url),
        tokens=TokenIssuer(TokenConfig(secret_key=TEST_SECRET)),
        mailer=RecordingMailer(),
        avatars=AvatarPipeline(avatars_dir=root / "public" / "avatars", tmp_dir=root / "tmp"),
    )


def png_bytes(size: tuple[int, int] = (40, 30), mode: str = "RGB", color="red") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def service(tmp_path: Path) -> Generator[AccountService, None, None]:
    svc = make_service("sqlite:///:memory:", tmp_path)
    yield svc
    svc.store.close()


@pytest.fixture
def verified_account(service: AccountService) -> tuple[str, str]:
    """Sign up and verify a@x.com / secret1; return (email, password)."""
    service.signup("a@x.com", "secret1")
    service.verify(service.mailer.token_for("a@x.com"))
    return "a@x.com", "secret1"


def _patch_lifespan(accounts: AccountService):
    """Return a lifespan that wires the pre-built test service into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.accounts = accounts
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, AccountService], None, None]:
    """Yield (client, service) for HTTP integration tests.

    Tests hit the real route handlers and exception handlers; only the
    collaborators built in lifespan are replaced. Use distinct emails per
    test because the store lives for the whole module.
    """
    root = tmp_path_factory.mktemp("api")
    db_url = f"sqlite:///file:test_accounts_{root.name}?mode=memory&cache=shared&uri=true"
    accounts = make_service(db_url, root)

    app.router.lifespan_context = _patch_lifespan(accounts)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, accounts

    accounts.store.close()
