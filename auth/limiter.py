"""
auth/limiter.py -- Per-principal failed login counter with a lockout threshold.

Policy:
  - Every password mismatch adds one failure (record_failure).
  - A principal whose count strictly exceeds max_attempts is locked out:
    check() raises RateLimited before any password hashing, so a correct
    password does not get through either.
  - A successful full login clears the counter (reset).
  - Optional rolling window: with window_seconds > 0, a record whose last
    failure is older than the window counts as zero, and the next failure
    restarts it at 1.

record_failure() is meant to run detached from the request (FastAPI
BackgroundTasks) after the 403 has been sent. It is best effort: a store
error is logged and dropped, since there is no caller left to report it to.
A near-simultaneous second attempt may not see the increment yet.

This is unrelated to the per-IP slowapi limiter in api/limiter.py, which
throttles request volume on the login route regardless of principal.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import RateLimited
from auth.store import AuthStore

logger = logging.getLogger("authgate.auth")


class LoginAttemptLimiter:
    def __init__(self, store: AuthStore, max_attempts: int = 20, window_seconds: int = 0) -> None:
        self._store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    def _cutoff(self) -> str:
        """ISO timestamp before which a failure no longer counts ("" = never)."""
        if self.window_seconds <= 0:
            return ""
        return (datetime.now(timezone.utc) - timedelta(seconds=self.window_seconds)).isoformat()

    def failed_attempts(self, user_id: int) -> int:
        """Return the number of failures currently counting against user_id."""
        record = self._store.get_failed_attempts(user_id)
        if record is None:
            return 0
        if record.last_attempt < self._cutoff():
            return 0
        return record.attempts

    def is_locked(self, user_id: int) -> bool:
        return self.failed_attempts(user_id) > self.max_attempts

    def check(self, user_id: int) -> None:
        """Raise RateLimited if user_id is locked out."""
        if self.is_locked(user_id):
            logger.warning("Login rejected: user_id=%d is locked out", user_id)
            raise RateLimited()

    def record_failure(self, user_id: int) -> None:
        try:
            self._store.increment_failed_attempts(user_id, cutoff=self._cutoff())
        except SQLAlchemyError:
            logger.exception("Could not record failed login for user_id=%d", user_id)

    def reset(self, user_id: int) -> None:
        self._store.reset_failed_attempts(user_id)
