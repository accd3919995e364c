"""
core/metrics.py -- Fire-and-forget counter sink.

The auth layer only needs "increment this counter with these tags". Anything
that implements MetricsSink.incr() can be plugged into AuthContext (a statsd
or Datadog client adapter, for instance). Metrics is the in-process default:
it keeps running totals in memory and logs each increment at DEBUG.

incr() must never raise into request code. Counters are observability, not
control flow.

Layer rule: core/ may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Iterable
from typing import Protocol

logger = logging.getLogger("authgate.metrics")


class MetricsSink(Protocol):
    def incr(self, name: str, tags: Iterable[str] = (), value: int = 1) -> None: ...


class Metrics:
    """Thread-safe in-memory counter sink.

    Counters are keyed by (name, sorted tags) so the same tag set given in a
    different order lands on the same counter.

    Usage:
        metrics = Metrics()
        metrics.incr("requests.v1", ["authorised"])
        metrics.count("requests.v1", ["authorised"])  # -> 1
    """

    def __init__(self) -> None:
        self._counts: Counter[tuple[str, tuple[str, ...]]] = Counter()
        self._lock = threading.Lock()

    def incr(self, name: str, tags: Iterable[str] = (), value: int = 1) -> None:
        key = (name, tuple(sorted(tags)))
        with self._lock:
            self._counts[key] += value
        logger.debug("metric %s %s +%d", name, ",".join(key[1]) or "-", value)

    def count(self, name: str, tags: Iterable[str] = ()) -> int:
        """Return the running total for an exact (name, tags) pair."""
        with self._lock:
            return self._counts[(name, tuple(sorted(tags)))]

    def total(self, name: str) -> int:
        """Return the running total for name across every tag set."""
        with self._lock:
            return sum(v for (n, _), v in self._counts.items() if n == name)
