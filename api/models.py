"""
API request and response models for authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Every field of TokenNewRequest has a default: absent fields are reported by
auth.login.issue_token as one MissingField outcome listing all of them,
rather than as per-field validation errors. A body that is not JSON, or has
values of the wrong type, fails validation and is reported as the
MalformedRequest outcome (see api/main.py).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Identity, LoginResult
from auth.privileges import privilege_names

# Integer fields are bound straight into SQLite INTEGER columns.
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class TokenNewRequest(BaseModel):
    """Request body for POST /api/v1/tokens/new.

    Either username or id must be given; id wins when both are.
    """

    username: str = Field(default="", max_length=255)
    id: int = Field(default=0, ge=_INT64_MIN, le=_INT64_MAX)
    password: str = ""
    privileges: int = Field(default=0, ge=_INT64_MIN, le=_INT64_MAX)
    description: str = Field(default="", max_length=1024)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ResponseBase(BaseModel):
    """Envelope shared by every response: the logical outcome code."""

    code: int
    message: Optional[str] = None


class TokenNewResponse(ResponseBase):
    """Response body for POST /api/v1/tokens/new.

    token is present only when a token was actually issued. A banned account
    gets code 200, banned=true, and no token.
    """

    model_config = ConfigDict(frozen=True)

    username: str
    id: int
    privileges: int = 0
    token: Optional[str] = None
    banned: bool = False

    @classmethod
    def from_result(cls, result: LoginResult) -> "TokenNewResponse":
        return cls(
            code=200,
            message="That user is banned." if result.banned else None,
            username=result.username,
            id=result.user_id,
            privileges=result.privileges,
            token=result.token,
            banned=result.banned,
        )


class PingResponse(ResponseBase):
    """Response for GET /api/v1/ping -- who the presented token resolves to."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    privileges: int
    privilege_names: list[str]

    @classmethod
    def from_identity(cls, identity: Identity) -> "PingResponse":
        return cls(
            code=200,
            message="Pong!",
            user_id=identity.user_id,
            privileges=int(identity.privileges),
            privilege_names=privilege_names(identity.privileges),
        )


class TokenSelfResponse(ResponseBase):
    """Response for GET /api/v1/tokens/self."""

    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    username: str
    privileges: int
