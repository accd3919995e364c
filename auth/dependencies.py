"""
auth/dependencies.py -- FastAPI Depends() helpers for token resolution and
privilege gating.

The token is taken from the first non-empty source, in strict priority order:
  1. Dedicated header (Settings.token_header, "X-Auth-Token" by default).
  2. "token" query parameter.
  3. "k" query parameter (short alias).
  4. Cookie (Settings.token_cookie, "rt" by default).
Sources are never merged: a header wins even if the cookie holds a
different token.

resolve_identity() never fails for a bad token. No token and an unknown token
both yield the anonymous identity, so callers cannot tell the two apart.
require_privileges() is the gate: it compares the required mask against the
identity's granted mask and raises AccessDenied naming exactly what is
missing.

Layer rule: auth/dependencies.py may import from fastapi (for Depends/Request)
because this module is part of the FastAPI dependency injection system. No
imports from api/.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from auth.context import AuthContext
from auth.errors import AccessDenied, Internal, Unauthenticated
from auth.models import ANONYMOUS, Identity
from auth.privileges import NO_PRIVILEGES, Privileges, missing_privileges
from auth.tokens import hash_token

logger = logging.getLogger("authgate.auth")

REQUESTS_METRIC = "requests.v1"


def get_auth_context(request: Request) -> AuthContext:
    """Return the AuthContext built by the application lifespan."""
    return request.app.state.auth


def extract_token(request: Request, header: str = "X-Auth-Token", cookie: str = "rt") -> str:
    """Return the presented token, or "" if the request carries none."""
    return (
        request.headers.get(header)
        or request.query_params.get("token")
        or request.query_params.get("k")
        or request.cookies.get(cookie)
        or ""
    )


def _is_trusted_client(request: Request, ctx: AuthContext) -> bool:
    """True when the request carries the trusted internal client's key and name.

    Advisory only: the result tags metrics and never grants privileges.
    """
    expected_key = ctx.settings.trusted_client_key
    if not expected_key:
        return False
    presented = request.headers.get("X-Client-Key", "")
    return hmac.compare_digest(presented.encode(), expected_key.encode()) and (
        request.headers.get("User-Agent", "") == ctx.settings.trusted_client_name
    )


def resolve_identity(request: Request, ctx: AuthContext = Depends(get_auth_context)) -> Identity:
    """Resolve the request's token to an Identity (anonymous if it does not resolve).

    Counts every request in the "requests.v1" metric, tagged "authorised" when
    a token resolved and "trusted_client" for the trusted internal client.
    """
    tags: list[str] = []
    identity = ANONYMOUS

    raw_token = extract_token(request, ctx.settings.token_header, ctx.settings.token_cookie)
    if raw_token:
        try:
            found = ctx.store.get_identity(hash_token(raw_token, ctx.settings.secret_key))
        except SQLAlchemyError as exc:
            logger.exception("Token lookup failed")
            raise Internal() from exc
        if found is not None:
            identity = found
            tags.append("authorised")

    if _is_trusted_client(request, ctx):
        tags.append("trusted_client")

    ctx.metrics.incr(REQUESTS_METRIC, tags)
    return identity


def require_privileges(*privileges: Privileges) -> Callable[..., Identity]:
    """Build a dependency that admits only identities holding every given privilege.

    Use as a FastAPI dependency:
        @router.get("/settings")
        def route(identity: Identity = Depends(require_privileges(Privileges.MANAGE_SETTINGS))): ...

    With no privileges the dependency admits everyone, anonymous included.
    """
    required = NO_PRIVILEGES
    for privilege in privileges:
        required |= privilege

    def gate(identity: Identity = Depends(resolve_identity)) -> Identity:
        missing = missing_privileges(identity.privileges, required)
        if missing:
            raise AccessDenied(missing)
        return identity

    return gate


def require_token(identity: Identity = Depends(resolve_identity)) -> Identity:
    """Admit only requests whose token resolved. Raises Unauthenticated otherwise."""
    if not identity.authenticated:
        raise Unauthenticated()
    return identity
