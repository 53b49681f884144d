"""
tests/conftest.py -- Shared test fixtures for AuthPair.

This module provides:
  - codec / service fixtures wired to in-memory fakes (tests/fakes.py)
  - api_client: TestClient over the real FastAPI app with an in-memory DB

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the API fixture because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

The signing secrets must be in the environment before any project import so
get_settings() builds the same Settings the tests use to forge tokens.
BCRYPT_ROUNDS is lowered to keep the suite fast.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: configure the environment before any api/auth/core import.
os.environ["DEBUG"] = "true"
os.environ["JWT_ACCESS_SECRET"] = "test-user-access-secret-0123456789abcdef"
os.environ["JWT_REFRESH_SECRET"] = "test-user-refresh-secret-0123456789abcdef"
os.environ["EMP_JWT_ACCESS_SECRET"] = "test-employee-access-secret-0123456789abcdef"
os.environ["EMP_JWT_REFRESH_SECRET"] = "test-employee-refresh-secret-0123456789abcdef"
os.environ["BCRYPT_ROUNDS"] = "4"

import pytest
from fastapi.testclient import TestClient

from auth.kinds import EMPLOYEE, USER
from auth.service import AuthService
from auth.store import create_store_engine
from auth.tokens import TokenCodec
from core.config import Settings, get_settings
from tests.fakes import InMemoryCredentialStore, InMemoryRefreshTokenStore

get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def user_codec(settings: Settings) -> TokenCodec:
    return TokenCodec(USER, settings.token_settings("User"))


@pytest.fixture
def employee_codec(settings: Settings) -> TokenCodec:
    return TokenCodec(EMPLOYEE, settings.token_settings("Employee"))


@pytest.fixture
def refresh_store() -> InMemoryRefreshTokenStore:
    return InMemoryRefreshTokenStore()


@pytest.fixture
def user_principals() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def employee_principals() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def user_service(user_codec, user_principals, refresh_store) -> AuthService:
    """AuthService for Users wired to in-memory fakes."""
    return AuthService(
        kind=USER,
        codec=user_codec,
        principals=user_principals,
        refresh_tokens=refresh_store,
        bcrypt_rounds=4,
    )


@pytest.fixture
def employee_service(employee_codec, employee_principals, refresh_store) -> AuthService:
    """AuthService for Employees sharing the refresh store with user_service."""
    return AuthService(
        kind=EMPLOYEE,
        codec=employee_codec,
        principals=employee_principals,
        refresh_tokens=refresh_store,
        bcrypt_rounds=4,
    )


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(db_url: str):
    """Return a lifespan that wires the auth core onto an isolated in-memory DB.

    The purge_task is a long-sleeping coroutine standing in for the real
    6-hourly purge loop.
    """
    from api.main import wire_auth

    @asynccontextmanager
    async def test_lifespan(app):
        engine = create_store_engine(db_url)
        wire_auth(app, get_settings(), engine)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        await asyncio.gather(app.state.purge_task, return_exceptions=True)
        engine.dispose()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient for the real app backed by a per-module in-memory database."""
    from api.main import app

    db_url = f"sqlite:///file:test_authpair_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    app.router.lifespan_context = _patch_lifespan(db_url)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
