"""
auth/tokens.py -- Password hashing and bearer token utilities.

Security design decisions:
  Passwords: two-stage. The plaintext is first reduced to its MD5 hex digest,
       and the digest is what bcrypt hashes and checks. Stored hashes were
       derived from the digested form, so the first stage can never be
       skipped. It also keeps bcrypt's 72-byte input ceiling out of play:
       the digest is always 32 ASCII characters whatever the password length.
       bcrypt.checkpw does the constant-time comparison.

  Tokens: 32 characters from [A-Za-z0-9] drawn with secrets.choice, roughly
       190 bits of entropy. We store HMAC-SHA256(SECRET_KEY, raw_token) so
       lookup is O(1) via a UNIQUE index. bcrypt's intentional slowness is
       unnecessary for high-entropy secrets.

The HMAC key is passed in explicitly (from AuthContext.settings) rather than
read from a module-level settings object.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import string

import bcrypt

_TOKEN_ALPHABET = string.ascii_letters + string.digits


# ---------------------------------------------------------------------------
# Password hashing (bcrypt over an MD5 pre-digest)
# ---------------------------------------------------------------------------


def _predigest(plain: str) -> bytes:
    return hashlib.md5(plain.encode("utf-8")).hexdigest().encode("ascii")  # noqa: S324 # nosec B324


def hash_password(plain: str) -> str:
    """Return the stored form of a password: bcrypt(md5_hex(plain))."""
    return bcrypt.hashpw(_predigest(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the stored hash.

    Raises ValueError if hashed is not a well-formed bcrypt hash. That is a
    data problem, not a wrong password, and the caller reports it as an
    internal error.
    """
    return bcrypt.checkpw(_predigest(plain), hashed.encode("utf-8"))


# ---------------------------------------------------------------------------
# Bearer tokens
# ---------------------------------------------------------------------------


def generate_token(length: int = 32) -> str:
    """Generate a random printable token of the given length."""
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def hash_token(raw_token: str, key: str) -> str:
    """Return HMAC-SHA256(key, raw_token) as a hex string.

    Deterministic, so a presented token can be looked up by its reference.
    An attacker holding a copy of the DB cannot replay references as tokens.
    """
    return hmac.new(key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()
