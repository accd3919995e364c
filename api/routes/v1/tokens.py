"""
api/routes/v1/tokens.py -- Token issuance and resolution endpoints.

Routes:
  POST /api/v1/tokens/new    -- password login; returns a new token once
  GET  /api/v1/tokens/self   -- the presented token's identity (requires a token)
  GET  /api/v1/ping          -- who the presented token resolves to (public)

Security:
  POST /tokens/new is rate-limited per IP (LOGIN_RATE_LIMIT) on top of the
  per-account lockout in auth.limiter.
  Cache-Control: no-store on login responses: they may carry a plaintext token.
  The failed-attempt increment runs as a background task after the response.
  Every route, login included, resolves the presented token so the request
  is counted in the requests.v1 metric.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response

from api.encoder import encode, encode_error
from api.limiter import limiter, login_rate_limit
from api.models import PingResponse, TokenNewRequest, TokenNewResponse, TokenSelfResponse
from auth.context import AuthContext
from auth.dependencies import get_auth_context, require_token, resolve_identity
from auth.errors import AuthError
from auth.login import issue_token
from auth.models import Identity

# Auth policy:
# - POST /api/v1/tokens/new:   public -- login endpoint must be unauthenticated
# - GET  /api/v1/ping:         public -- anonymous callers get user_id 0
# - GET  /api/v1/tokens/self:  requires a token that resolves (require_token)
router = APIRouter()


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/tokens/new", dependencies=[Depends(resolve_identity)])
def new_token(
    request: Request,
    body: TokenNewRequest,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(get_auth_context),
) -> Response:
    """Verify a password and mint a token capped to the account's rank.

    Outcomes are rendered here rather than by the app-level AuthError handler
    so the deferred failed-attempt increment stays attached to the response.
    """
    try:
        result = issue_token(
            ctx,
            username=body.username,
            user_id=body.id,
            password=body.password,
            privileges=body.privileges,
            description=body.description,
            defer=background_tasks.add_task,
        )
        resp = encode(
            request,
            TokenNewResponse.from_result(result).model_dump(exclude_none=True),
            200,
            background=background_tasks,
        )
    except AuthError as exc:
        resp = encode_error(request, exc, background=background_tasks)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/tokens/self")
def token_self(request: Request, identity: Identity = Depends(require_token)) -> Response:
    """Return the identity bound to the presented token."""
    payload = TokenSelfResponse(
        code=200,
        id=identity.token_id,
        user_id=identity.user_id,
        username=identity.username,
        privileges=int(identity.privileges),
    )
    return encode(request, payload.model_dump(exclude_none=True), 200)


@router.get("/ping")
def ping(request: Request, identity: Identity = Depends(resolve_identity)) -> Response:
    """Report the identity and privileges the presented token resolves to."""
    return encode(request, PingResponse.from_identity(identity).model_dump(exclude_none=True), 200)
