"""
auth/errors.py -- Per-request outcomes that end a login or a gated request.

Every class carries an HTTP-analog code and the message shown to the caller.
All of them are terminal: nothing is retried except the token uniqueness
loop in auth.login.mint_token, which never surfaces as one of these unless
it is exhausted.

Internal keeps the caller-facing message opaque. Log the detail where the
failure is caught, never put it in the message.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from auth.privileges import Privileges, describe


class AuthError(Exception):
    code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class MalformedRequest(AuthError):
    code = 400
    message = "Your JSON for this request is invalid."


class MissingField(AuthError):
    """Lists every absent required field, not just the first one."""

    code = 400

    def __init__(self, *fields: str) -> None:
        self.fields = list(fields)
        super().__init__(f"Missing parameters: {', '.join(fields)}.")


class NotFound(AuthError):
    code = 404
    message = "No user with that username/id was found."


class CredentialRejected(AuthError):
    code = 403
    message = "That password doesn't match!"


class LegacyCredentialVersion(AuthError):
    code = 418
    message = (
        "That user still has a password in version 1. "
        "In order for the password to be checked here, the user has to log in through the website first."
    )


class RateLimited(AuthError):
    code = 429
    message = "You've made too many login attempts. Try again later."


class AccessDenied(AuthError):
    """Names exactly the capabilities the caller is missing."""

    code = 401

    def __init__(self, missing: Privileges) -> None:
        self.missing = missing
        super().__init__(f"You don't have the privilege(s): {describe(missing)}.")


class Unauthenticated(AuthError):
    code = 401
    message = "A valid token is required."


class Internal(AuthError):
    code = 500
    message = "An unexpected error occurred."


class TokenGenerationExhausted(Internal):
    pass
