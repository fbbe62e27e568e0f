"""Short-TTL in-process cache for active retention policies."""

from __future__ import annotations

import time
from collections.abc import Callable
from threading import Lock

from services.action.retention_engine.domain import RetentionPolicy


class PolicyCache:
    """Cache one loaded policy list for ``ttl_seconds``.

    A TTL of zero disables caching. Loader failures are never cached.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        self._policies: tuple[RetentionPolicy, ...] | None = None
        self._loaded_at = 0.0

    def get(
        self, loader: Callable[[], list[RetentionPolicy]]
    ) -> tuple[RetentionPolicy, ...]:
        """Return cached policies, reloading through ``loader`` when stale."""
        with self._lock:
            now = self._clock()
            if self._policies is not None and now - self._loaded_at < self._ttl_seconds:
                return self._policies
            policies = tuple(loader())
            self._policies = policies
            self._loaded_at = now
            return policies

    def invalidate(self) -> None:
        """Drop any cached policy list."""
        with self._lock:
            self._policies = None
