"""
tests/conftest.py -- Shared test fixtures for authgate.

This module provides:
  - make_context(): an AuthContext over an isolated named in-memory DB
  - seed_principals(): the standard cast of accounts used across tests
  - _patch_lifespan(): wires a test AuthContext into app.state, bypassing real startup
  - ctx, users: function-scoped AuthContext and seeded principals (unit tests)
  - api_client: module-scoped TestClient over the real FastAPI app

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

DEBUG must be set before any core/auth import so get_settings() auto-generates
SECRET_KEY instead of raising. LOGIN_RATE_LIMIT is raised so the per-IP
slowapi limit never interferes with tests that post many logins.
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "10000/minute")

import pytest
from fastapi import APIRouter, Depends, Request
from fastapi.testclient import TestClient

from api.encoder import encode
from api.main import app
from auth.context import AuthContext
from auth.dependencies import require_privileges
from auth.models import Identity, Principal
from auth.privileges import Privileges, Rank
from auth.store import AuthStore
from auth.tokens import hash_password
from core.config import get_settings
from core.metrics import Metrics

PASSWORD = "correct horse battery staple"

# Computed once: bcrypt is deliberately slow.
_PASSWORD_HASH = hash_password(PASSWORD)

_db_counter = itertools.count()

# ---------------------------------------------------------------------------
# A privilege-gated route for exercising require_privileges end to end
# ---------------------------------------------------------------------------

GATED_PATH = "/test/gated"
GATED_PRIVILEGES = (Privileges.WRITE, Privileges.MANAGE_USER)

_gated_router = APIRouter()


@_gated_router.get(GATED_PATH)
def gated(request: Request, identity: Identity = Depends(require_privileges(*GATED_PRIVILEGES))):
    return encode(request, {"code": 200, "user_id": identity.user_id}, 200)


if not any(getattr(r, "path", None) == GATED_PATH for r in app.routes):
    app.include_router(_gated_router)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_context(db_suffix: str, **overrides) -> AuthContext:
    """Create an AuthContext over a fresh named shared-memory SQLite DB.

    overrides are applied to a copy of the cached Settings, e.g.
    make_context("x", max_failed_attempts=3).
    """
    db_url = f"sqlite:///file:test_auth_{db_suffix}_{next(_db_counter)}?mode=memory&cache=shared&uri=true"
    settings = get_settings().model_copy(update=overrides)
    return AuthContext.create(settings, store=AuthStore(db_url), metrics=Metrics())


def seed_principals(store: AuthStore) -> dict[str, int]:
    """Create the standard test accounts and return {username: id}.

    alice   -- rank USER
    dev     -- rank DEVELOPER
    admin   -- rank ADMIN
    banned  -- rank ADMIN, banned
    legacy  -- rank USER, password version 1
    """
    cast = [
        Principal(username="alice", rank=Rank.USER),
        Principal(username="dev", rank=Rank.DEVELOPER),
        Principal(username="admin", rank=Rank.ADMIN),
        Principal(username="banned", rank=Rank.ADMIN, banned=True),
        Principal(username="legacy", rank=Rank.USER, password_version=1),
    ]
    ids = {}
    for principal in cast:
        principal.password_hash = _PASSWORD_HASH
        ids[principal.username] = store.create_principal(principal)
    return ids


def _patch_lifespan(ctx: AuthContext):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = ctx
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def ctx() -> Generator[AuthContext, None, None]:
    """Function-scoped AuthContext over an empty store."""
    context = make_context("unit")
    yield context
    context.close()


@pytest.fixture
def users(ctx: AuthContext) -> dict[str, int]:
    """Seed the standard accounts into ctx and return {username: id}."""
    return seed_principals(ctx.store)


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, AuthContext, dict[str, int]], None, None]:
    """Yield (client, ctx, users) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan, so
    requests go through the real middleware, dependencies, and encoder
    against an isolated in-memory store. users maps username -> id.
    """
    context = make_context(
        "api",
        trusted_client_key="k" * 40,
        trusted_client_name="internal-frontend",
    )
    users = seed_principals(context.store)

    app.router.lifespan_context = _patch_lifespan(context)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, context, users

    context.close()
