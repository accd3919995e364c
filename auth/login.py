"""
auth/login.py -- Password login and token issuance.

issue_token() is the whole login flow, in this order:

  1. Required fields: a selector (id or username) and a password. Every
     missing one is reported at once (MissingField).
  2. Principal lookup: id wins over username. No row -> NotFound. A bad
     selector is a different outcome from a bad password.
  3. Lockout (LoginAttemptLimiter.check) before any hashing -> RateLimited.
  4. Legacy password version 1 -> LegacyCredentialVersion. No comparison is
     attempted; the user must go through the external legacy login first.
  5. bcrypt(md5_hex(password)) check. Mismatch -> the failed-attempt
     increment is handed to `defer` and CredentialRejected is raised.
  6. Banned account -> LoginResult(banned=True) without a token. This is a
     soft fail, not an error.
  7. Privilege capping and token minting, then the failed-attempt counter
     is reset. A reset failure is logged; the token stands.

Store and bcrypt failures are logged here with full detail and re-raised as
the opaque Internal outcome.

`defer` is how the caller detaches the failed-attempt write from the
response. The API passes BackgroundTasks.add_task; run_now executes inline
and suits the CLI and unit tests.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.context import AuthContext
from auth.errors import (
    CredentialRejected,
    Internal,
    LegacyCredentialVersion,
    MissingField,
    NotFound,
    TokenGenerationExhausted,
)
from auth.models import LoginResult, Principal, Token
from auth.privileges import cap_privileges
from auth.tokens import generate_token, hash_token, verify_password

logger = logging.getLogger("authgate.auth")

LEGACY_PASSWORD_VERSION = 1

Defer = Callable[..., Any]


def run_now(func: Callable[..., Any], *args: Any) -> None:
    """A `defer` that does not defer: run the task inline."""
    func(*args)


# ---------------------------------------------------------------------------
# Credential verification
# ---------------------------------------------------------------------------


def find_principal(ctx: AuthContext, user_id: int = 0, username: str = "") -> Principal:
    """Look up exactly one principal. A non-zero user_id takes priority."""
    try:
        if user_id:
            principal = ctx.store.get_principal_by_id(user_id)
        else:
            principal = ctx.store.get_principal_by_username(username)
    except SQLAlchemyError as exc:
        logger.exception("Principal lookup failed")
        raise Internal() from exc
    if principal is None:
        raise NotFound()
    return principal


def verify_credentials(ctx: AuthContext, principal: Principal, password: str, defer: Defer = run_now) -> None:
    """Raise unless password is the principal's current, verifiable password.

    Does not look at the banned flag: a banned principal with the right
    password passes here and is handled by the caller.
    """
    try:
        ctx.limiter.check(principal.id)
    except SQLAlchemyError as exc:
        logger.exception("Failed-attempt lookup failed for user_id=%d", principal.id)
        raise Internal() from exc

    if principal.password_version == LEGACY_PASSWORD_VERSION:
        raise LegacyCredentialVersion()

    try:
        matches = verify_password(password, principal.password_hash)
    except ValueError as exc:
        logger.exception("Stored password hash for user_id=%d is malformed", principal.id)
        raise Internal() from exc

    if not matches:
        defer(ctx.limiter.record_failure, principal.id)
        logger.info("Login rejected: wrong password for user_id=%d", principal.id)
        raise CredentialRejected()


# ---------------------------------------------------------------------------
# Token minting
# ---------------------------------------------------------------------------


def mint_token(ctx: AuthContext, user_id: int, privileges: int, description: str = "") -> str:
    """Create and persist a token; return its plaintext.

    The plaintext is returned exactly once. Only its HMAC reference is
    stored. A reference collision, whether seen by the existence check or
    by the UNIQUE index on insert, means regenerate. The loop is capped at
    settings.token_mint_max_attempts.
    """
    settings = ctx.settings
    for attempt in range(1, settings.token_mint_max_attempts + 1):
        raw_token = generate_token(settings.token_length)
        reference = hash_token(raw_token, settings.secret_key)
        try:
            if ctx.store.token_reference_exists(reference):
                logger.warning("Token reference collision (attempt %d), regenerating", attempt)
                continue
            ctx.store.insert_token(
                Token(user_id=user_id, privileges=int(privileges), reference=reference, description=description)
            )
        except IntegrityError:
            logger.warning("Token reference taken on insert (attempt %d), regenerating", attempt)
            continue
        except SQLAlchemyError as exc:
            logger.exception("Token insert failed for user_id=%d", user_id)
            raise Internal() from exc
        return raw_token

    logger.error(
        "Gave up minting a token for user_id=%d after %d attempts",
        user_id,
        settings.token_mint_max_attempts,
    )
    raise TokenGenerationExhausted()


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


def issue_token(
    ctx: AuthContext,
    *,
    password: str,
    user_id: int = 0,
    username: str = "",
    privileges: int = 0,
    description: str = "",
    defer: Defer = run_now,
) -> LoginResult:
    """Verify a password login and mint a token capped to the principal's rank."""
    missing = []
    if not username and not user_id:
        missing.append("username|id")
    if not password:
        missing.append("password")
    if missing:
        raise MissingField(*missing)

    principal = find_principal(ctx, user_id=user_id, username=username)
    verify_credentials(ctx, principal, password, defer=defer)

    if principal.banned:
        logger.info("Login for banned user_id=%d, no token issued", principal.id)
        return LoginResult(user_id=principal.id, username=principal.username, banned=True)

    granted = cap_privileges(privileges, principal.rank)
    token = mint_token(ctx, principal.id, granted, description)

    try:
        ctx.limiter.reset(principal.id)
    except SQLAlchemyError:
        logger.exception("Could not clear failed attempts for user_id=%d", principal.id)
    logger.info("Issued token for user_id=%d privileges=%d", principal.id, int(granted))
    return LoginResult(
        user_id=principal.id,
        username=principal.username,
        privileges=int(granted),
        token=token,
    )
