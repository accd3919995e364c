"""
api/limiter.py -- Shared slowapi rate limiter instance (per client IP).

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/tokens.py (to apply the login limit with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

This throttles request volume per IP. Lockout of a single account after
repeated wrong passwords is auth.limiter.LoginAttemptLimiter's job.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Limit string for POST /tokens/new, read from LOGIN_RATE_LIMIT."""
    return get_settings().login_rate_limit
