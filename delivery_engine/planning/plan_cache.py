"""
Session Plan Cache.

TTL cache of fully composed plans so an immediate re-fetch does not recompute
the whole pipeline. Shared across concurrent requests; every access holds the
lock. Plans are written only after composition completes.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import NamedTuple

from loguru import logger

from delivery_engine.core.models import SessionContext, SessionPlan

DEFAULT_TTL_SECONDS = 300.0
ALL_SCOPE = "all"
DEFAULT_BUDGET = "default"


class PlanCacheKey(NamedTuple):
    """(learner, mode, lesson scope, module scope, time budget)."""

    learner_id: str
    mode: str
    lesson: str
    module: str
    budget: str

    @classmethod
    def for_context(cls, learner_id: str, context: SessionContext) -> PlanCacheKey:
        return cls(
            learner_id=learner_id,
            mode=context.mode.value,
            lesson=context.lesson_id or ALL_SCOPE,
            module=context.module_id or ALL_SCOPE,
            budget=str(context.time_budget_sec) if context.time_budget_sec else DEFAULT_BUDGET,
        )

    def __str__(self) -> str:
        return ":".join(self)


@dataclass
class _CacheEntry:
    plan: SessionPlan
    stored_at: float


@dataclass(frozen=True)
class CacheStats:
    size: int
    ttl_seconds: float


class SessionPlanCache:
    """
    Mutex-guarded TTL map of session plans.

    Args:
        ttl_seconds: Entry lifetime; an entry is stale once age >= ttl
        clock: Monotonic seconds source (injected for tests)
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[PlanCacheKey, _CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: PlanCacheKey) -> SessionPlan | None:
        """Cached plan if still fresh; an expired entry is evicted and reported as a miss."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug(f"Plan cache miss: {key}")
                return None
            if self.clock() - entry.stored_at >= self.ttl_seconds:
                del self._entries[key]
                logger.debug(f"Plan cache expired: {key}")
                return None
            logger.debug(f"Plan cache hit: {key}")
            return entry.plan

    def set(self, key: PlanCacheKey, plan: SessionPlan) -> None:
        with self._lock:
            self._entries[key] = _CacheEntry(plan=plan, stored_at=self.clock())

    def invalidate(self, learner_id: str) -> int:
        """Drop every entry for a learner. Returns the number removed."""
        with self._lock:
            stale = [k for k in self._entries if k.learner_id == learner_id]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached plans for {learner_id}")
        return len(stale)

    def invalidate_lesson(self, learner_id: str, lesson_id: str) -> int:
        """Drop a learner's entries scoped to one lesson."""
        with self._lock:
            stale = [k for k in self._entries if k.learner_id == learner_id and k.lesson == lesson_id]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached plans for {learner_id} lesson {lesson_id}")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(size=len(self._entries), ttl_seconds=self.ttl_seconds)
