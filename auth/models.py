"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial derived
properties). Stores and the login flow do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.privileges import NO_PRIVILEGES, Privileges


@dataclass
class Principal:
    """An account capable of authenticating.

    Principals are created by external account-management flows; the login
    core only reads them. password_hash is bcrypt(md5_hex(password)).
    password_version 1 marks the legacy scheme that this flow cannot verify.

    privileges is the account's current mask. What a token may carry is
    governed by rank (see auth.privileges.entitlement), not by this field.
    """

    username: str
    rank: int
    id: int | None = None
    privileges: int = 0
    password_hash: str = ""
    password_version: int = 2
    banned: bool = False
    created_at: str | None = None


@dataclass
class Token:
    """A bearer token as persisted.

    reference is the HMAC-SHA256 of the plaintext token. The plaintext is
    returned to the caller once at issuance and is never stored.
    """

    user_id: int
    privileges: int
    reference: str
    description: str = ""
    id: int | None = None
    created_at: str | None = None


@dataclass
class FailedAttemptRecord:
    """Consecutive failed logins for one principal."""

    user_id: int
    attempts: int
    last_attempt: str  # ISO 8601 UTC


@dataclass(frozen=True)
class Identity:
    """Result of resolving the token presented with a request.

    The anonymous identity (no token, or a token that did not resolve) has
    user_id 0 and an empty mask, so privilege checks need no special case.
    """

    user_id: int = 0
    username: str = ""
    privileges: Privileges = NO_PRIVILEGES
    token_id: int | None = None

    @property
    def authenticated(self) -> bool:
        return self.token_id is not None


ANONYMOUS = Identity()


@dataclass
class LoginResult:
    """Outcome of a login that passed credential verification.

    banned=True is the soft-fail branch: the password was right but the
    account is disabled, so no token is issued.
    """

    user_id: int
    username: str
    privileges: int = 0
    token: str | None = None
    banned: bool = False
