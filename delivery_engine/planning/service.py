"""
Content delivery service: cache-through access to session plans.

This is the composition root for the engine. It wires the planner, mastery
tracker and learner profile onto the injected collaborators and fronts
create_plan with the session plan cache.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import datetime

from loguru import logger

from config import Settings, get_settings
from delivery_engine.core.models import SessionContext, SessionPlan
from delivery_engine.learning.mastery_tracker import MasteryTracker
from delivery_engine.learning.preferences import LearnerProfile
from delivery_engine.learning.progress import ProgressRecorder
from delivery_engine.planning.plan_cache import PlanCacheKey, SessionPlanCache
from delivery_engine.planning.session_planner import PlannerTunables, SessionPlanner
from delivery_engine.ports import ContentRepository, MasteryStore, PreferenceProvider, SrsScheduler


class ContentDeliveryService:
    """Serves session plans, composing them only on a cache miss."""

    def __init__(self, planner: SessionPlanner, cache: SessionPlanCache):
        self.planner = planner
        self.cache = cache

    @classmethod
    def create(
        cls,
        repository: ContentRepository,
        mastery_store: MasteryStore,
        preferences: PreferenceProvider,
        settings: Settings | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> ContentDeliveryService:
        """Wire the engine from its collaborators and settings."""
        settings = settings or get_settings()
        profile = LearnerProfile(preferences, repository)
        mastery = MasteryTracker(mastery_store, profile)

        planner_kwargs = {"rng": rng, "tunables": PlannerTunables.from_settings(settings)}
        if clock is not None:
            planner_kwargs["clock"] = clock
        planner = SessionPlanner(repository, mastery, profile, **planner_kwargs)

        cache = SessionPlanCache(ttl_seconds=settings.session_plan_cache_ttl_seconds)
        return cls(planner, cache)

    @property
    def mastery(self) -> MasteryTracker:
        return self.planner.mastery

    def progress_recorder(self, srs: SrsScheduler) -> ProgressRecorder:
        """Recorder sharing this service's mastery tracker and plan cache."""
        return ProgressRecorder(self.planner.repository, srs, self.mastery, self.cache)

    async def get_session_plan(
        self,
        learner_id: str,
        context: SessionContext,
        force_refresh: bool = False,
    ) -> SessionPlan:
        """
        Return a fresh cached plan or compose a new one.

        Args:
            learner_id: Learner identifier
            context: Session context (mode, budget, scope)
            force_refresh: Skip the cache read (the new plan is still cached)

        Returns:
            SessionPlan
        """
        key = PlanCacheKey.for_context(learner_id, context)
        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        plan = await self.planner.create_plan(learner_id, context)
        self.cache.set(key, plan)
        logger.debug(f"Cached plan {plan.id} under {key}")
        return plan
