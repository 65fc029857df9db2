"""
Unit tests for the session plan TTL cache.
"""

import pytest

from delivery_engine.core.models import SessionContext, SessionMode
from delivery_engine.planning.plan_cache import PlanCacheKey, SessionPlanCache


class FakeClock:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


def key_for(learner_id, **context):
    context.setdefault("mode", SessionMode.MIXED)
    return PlanCacheKey.for_context(learner_id, SessionContext(**context))


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def cache(fake_clock):
    return SessionPlanCache(ttl_seconds=300, clock=fake_clock)


class TestPlanCacheKey:
    def test_unscoped_context(self):
        assert str(key_for("learner-1", mode=SessionMode.REVIEW)) == "learner-1:review:all:all:default"

    def test_scoped_context(self):
        key = key_for("learner-1", mode=SessionMode.LEARN, time_budget_sec=600, lesson_id="lesson-3")
        assert str(key) == "learner-1:learn:lesson-3:all:600"


class TestSessionPlanCache:
    def test_hit_within_ttl(self, cache, fake_clock, make_plan):
        plan = make_plan("p1")
        cache.set(key_for("learner-1"), plan)
        fake_clock.t += 299.9

        assert cache.get(key_for("learner-1")) is plan

    def test_expires_at_ttl(self, cache, fake_clock, make_plan):
        cache.set(key_for("learner-1"), make_plan("p1"))
        fake_clock.t += 300

        assert cache.get(key_for("learner-1")) is None
        assert cache.stats().size == 0

    def test_invalidate_learner(self, cache, make_plan):
        for mode in SessionMode:
            cache.set(key_for("learner-1", mode=mode), make_plan(mode.value))
        cache.set(key_for("learner-10"), make_plan("other"))

        assert cache.invalidate("learner-1") == 3
        assert cache.get(key_for("learner-10")) is not None
        assert cache.invalidate("learner-1") == 0

    def test_invalidate_lesson_only_touches_that_lesson(self, cache, make_plan):
        cache.set(key_for("learner-1", lesson_id="l1"), make_plan("a"))
        cache.set(key_for("learner-1", lesson_id="l2"), make_plan("b"))

        assert cache.invalidate_lesson("learner-1", "l1") == 1
        assert cache.get(key_for("learner-1", lesson_id="l1")) is None
        assert cache.get(key_for("learner-1", lesson_id="l2")) is not None

    def test_clear(self, cache, make_plan):
        cache.set(key_for("learner-1"), make_plan())
        cache.clear()
        assert cache.stats().size == 0
        assert cache.stats().ttl_seconds == 300
