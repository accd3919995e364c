"""
auth/context.py -- The bundle of shared handles every auth operation needs.

Built once at startup (api/main.py lifespan) and passed explicitly into the
login flow and token resolution. Nothing in auth/ reaches for a module-level
store, metrics client, or settings object.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.limiter import LoginAttemptLimiter
from auth.store import AuthStore
from core.config import Settings
from core.metrics import Metrics, MetricsSink


@dataclass
class AuthContext:
    settings: Settings
    store: AuthStore
    metrics: MetricsSink
    limiter: LoginAttemptLimiter

    @classmethod
    def create(cls, settings: Settings, store: AuthStore | None = None, metrics: MetricsSink | None = None) -> "AuthContext":
        """Wire a context from settings, opening the store unless one is given."""
        if store is None:
            store = AuthStore(settings.database_url)
        return cls(
            settings=settings,
            store=store,
            metrics=metrics if metrics is not None else Metrics(),
            limiter=LoginAttemptLimiter(
                store,
                max_attempts=settings.max_failed_attempts,
                window_seconds=settings.failed_attempt_window_seconds,
            ),
        )

    def close(self) -> None:
        self.store.close()
