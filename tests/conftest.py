"""
tests/conftest.py -- Shared fixtures for authcore tests.

This module provides:
  - settings: a test-mode Settings (reduced bcrypt cost, fixed secret)
  - stores: isolated UserStore + RefreshTokenStore sharing one engine
  - service: an AuthService wired to those stores
  - make_user: factory for persisted users with a known password

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because FastAPI runs sync dependencies in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process. Each test gets
a fresh name so no state leaks between tests.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Generator

import pytest

from auth.models import User
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import RefreshTokenStore, UserStore
from core.config import Settings

TEST_SECRET = "authcore-test-secret-key-0123456789abcdef"
TEST_PASSWORD = "correct horse battery staple"


def memory_db_url(prefix: str = "authcore") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def settings() -> Settings:
    return Settings(environment="test", secret_key=TEST_SECRET, access_token_expire_minutes=15)


@pytest.fixture
def password() -> str:
    """The plaintext password make_user() assigns by default."""
    return TEST_PASSWORD


@pytest.fixture
def hasher(settings: Settings) -> PasswordHasher:
    return PasswordHasher.from_settings(settings)


@pytest.fixture
def stores() -> Generator[tuple[UserStore, RefreshTokenStore], None, None]:
    users = UserStore(db_url=memory_db_url())
    refresh_store = RefreshTokenStore(engine=users.engine)
    yield users, refresh_store
    users.close()


@pytest.fixture
def user_store(stores) -> UserStore:
    return stores[0]


@pytest.fixture
def refresh_store(stores) -> RefreshTokenStore:
    return stores[1]


@pytest.fixture
def service(settings, stores, hasher) -> AuthService:
    users, refresh_store = stores
    return AuthService(settings, users, refresh_store, hasher=hasher)


@pytest.fixture
def make_user(user_store: UserStore, hasher: PasswordHasher) -> Callable[..., User]:
    """Create and persist a user whose password is TEST_PASSWORD unless overridden."""

    def _make(email: str = "alice@example.com", password: str = TEST_PASSWORD, **fields) -> User:
        return user_store.create(User(email=email, hashed_password=hasher.hash(password), **fields))

    return _make
