"""Process-local, TTL-bounded cache of per-owner rule snapshots."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

import structlog

from retention_rules.config import Settings, get_settings
from retention_rules.rules.snapshot import RuleSet

logger = structlog.get_logger()


class RuleSetCache:
    """Caches `RuleSet` snapshots keyed by owner.

    The mutation engine calls `invalidate(owner)` after every committed change,
    so a stale snapshot is never served once a mutation has returned. The TTL
    only bounds staleness for writes made by other processes.
    """

    def __init__(
        self,
        ttl_seconds: float = 5.0,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, RuleSet]] = {}
        # Bumped on invalidation; a load that raced an invalidation is not stored.
        self._generation = 0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RuleSetCache":
        settings = settings or get_settings()
        return cls(settings.rule_cache_ttl, enabled=settings.rule_cache_enabled)

    def get(self, owner_user_id: str, loader: Callable[[], RuleSet]) -> RuleSet:
        """Return the cached snapshot or load and store a fresh one."""

        if not self._enabled:
            return loader()

        now = self._clock()
        with self._lock:
            hit = self._entries.get(owner_user_id)
            if hit is not None and now - hit[0] < self._ttl:
                return hit[1]
            generation = self._generation

        rule_set = loader()
        with self._lock:
            if generation == self._generation:
                self._entries[owner_user_id] = (self._clock(), rule_set)
        logger.debug("rule_set_cache_loaded", owner_user_id=owner_user_id)
        return rule_set

    def invalidate(self, owner_user_id: str | None = None) -> None:
        """Drop one owner's snapshot, or every snapshot when owner is None."""

        with self._lock:
            self._generation += 1
            if owner_user_id is None:
                self._entries.clear()
            else:
                self._entries.pop(owner_user_id, None)

    def __contains__(self, owner_user_id: str) -> bool:
        with self._lock:
            hit = self._entries.get(owner_user_id)
            return hit is not None and self._clock() - hit[0] < self._ttl
