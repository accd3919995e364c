"""
api/encoder.py -- Serializes every API outcome into an HTTP response.

Body: JSON, tab-indented, keys in model order. "<", ">", "&", U+2028 and
U+2029 are written as unicode escapes.

Callback wrapping: when the request carries ?callback=<name> and the name is
a plain JS identifier (ASCII letters, digits, "_" and "$", not starting with
a digit) shorter than 100 characters, the body becomes

    /**/ typeof <name> === 'function' && <name>(<json>);

served as application/javascript. The typeof guard means a name that is not
a function at runtime is never called. Any other callback value is ignored
and the plain JSON form is served as application/json.

?pls200: forces the transport status to 200 for clients that cannot read
non-2xx responses (script-tag callers). The body's "code" still carries the
real outcome.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from fastapi import Request, Response
from starlette.background import BackgroundTasks

from auth.errors import AuthError

logger = logging.getLogger("authgate.api")

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
CALLBACK_CONTENT_TYPE = "application/javascript; charset=utf-8"

_CALLBACK_RE = re.compile(r"[a-zA-Z_$][a-zA-Z0-9_$]*")
_MAX_CALLBACK_LENGTH = 100

# Characters escaped inside JSON strings so the body is safe to embed in a
# <script> element and to evaluate as JavaScript.
_JS_UNSAFE = str.maketrans(
    {
        "<": "\\u003c",
        ">": "\\u003e",
        "&": "\\u0026",
        "\u2028": "\\u2028",
        "\u2029": "\\u2029",
    }
)

_FALLBACK_BODY = '{\n\t"code": 500,\n\t"message": "An unexpected error occurred."\n}'


def valid_callback(name: str | None) -> bool:
    return bool(name) and len(name) < _MAX_CALLBACK_LENGTH and _CALLBACK_RE.fullmatch(name) is not None


def render(payload: Any, callback: str | None = None) -> tuple[str, str]:
    """Return (body, content_type) for payload, wrapped if callback is valid."""
    try:
        body = json.dumps(payload, indent="\t", ensure_ascii=False).translate(_JS_UNSAFE)
    except (TypeError, ValueError):
        logger.exception("Could not serialize response payload")
        body = _FALLBACK_BODY
    if valid_callback(callback):
        return f"/**/ typeof {callback} === 'function' && {callback}({body});", CALLBACK_CONTENT_TYPE
    return body, JSON_CONTENT_TYPE


def encode(
    request: Request,
    payload: dict[str, Any],
    code: int,
    background: BackgroundTasks | None = None,
) -> Response:
    """Build the HTTP response for payload whose logical outcome is code."""
    body, content_type = render(payload, request.query_params.get("callback"))
    status = 200 if "pls200" in request.query_params else code
    return Response(content=body, status_code=status, media_type=content_type, background=background)


def encode_error(request: Request, exc: AuthError, background: BackgroundTasks | None = None) -> Response:
    return encode(request, {"code": exc.code, "message": exc.message}, exc.code, background=background)
