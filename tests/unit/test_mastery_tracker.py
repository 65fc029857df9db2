"""
Unit tests for Bayesian Knowledge Tracing mastery.
"""

import pytest

from delivery_engine.core.models import BktParameters, LearnerPreferences, SkillMastery
from delivery_engine.learning.mastery_tracker import MasteryTracker, bkt_update
from delivery_engine.learning.preferences import LearnerProfile


class TestBktUpdate:
    def test_correct_answer_raises_mastery(self):
        # P(L|c) = 0.27 / 0.41, then + (1 - P(L|c)) * 0.2
        assert bkt_update(0.3, BktParameters(), True) == pytest.approx(0.726829, abs=1e-6)

    def test_wrong_answer_lowers_mastery(self):
        assert bkt_update(0.3, BktParameters(), False) == pytest.approx(0.03 / 0.59)

    @pytest.mark.parametrize(
        "params",
        [
            BktParameters(),
            BktParameters(prior=0.4, learn=0.15, guess=0.2, slip=0.1),
            BktParameters(prior=0.2, learn=0.5, guess=0.45, slip=0.3),
            BktParameters(prior=0.1, learn=0.0, guess=0.0, slip=0.0),
        ],
    )
    def test_incorrect_answer_never_raises_mastery(self, params):
        for i in range(101):
            p = i / 100
            updated = bkt_update(p, params, False)
            assert 0.0 <= updated <= p + 1e-12

    @pytest.mark.parametrize("params", [BktParameters(), BktParameters(learn=0.5, guess=0.3, slip=0.25)])
    def test_correct_answer_never_lowers_mastery(self, params):
        for i in range(101):
            p = i / 100
            assert p - 1e-12 <= bkt_update(p, params, True) <= 1.0

    def test_result_stays_in_unit_interval(self):
        params = BktParameters(prior=0.3, learn=1.0, guess=0.0, slip=0.0)
        assert bkt_update(0.99, params, True) == 1.0

    def test_zero_denominator_leaves_probability_unchanged(self):
        assert bkt_update(0.0, BktParameters(guess=0.0), True) == 0.0
        assert bkt_update(1.0, BktParameters(slip=0.0), False) == 1.0


class TestMasteryTracker:
    @pytest.mark.asyncio
    async def test_first_attempt_initializes_from_default_prior(self, mastery_store, clock):
        tracker = MasteryTracker(mastery_store, clock=clock)

        p = await tracker.update_mastery("learner-1", "greetings", True)

        assert p == pytest.approx(bkt_update(0.3, BktParameters(), True))
        stored = mastery_store.records[("learner-1", "greetings")]
        assert stored.prior == 0.3
        assert stored.last_updated == clock()

    @pytest.mark.asyncio
    async def test_initial_parameters_follow_onboarding_experience(
        self, mastery_store, preference_provider, repository
    ):
        preference_provider.preferences["learner-1"] = LearnerPreferences(experience="Complete beginner")
        tracker = MasteryTracker(mastery_store, LearnerProfile(preference_provider, repository))

        p = await tracker.update_mastery("learner-1", "greetings", True)

        # beginner: prior 0.4, learn 0.15
        assert p == pytest.approx(0.7875)
        assert mastery_store.records[("learner-1", "greetings")].prior == 0.4

    @pytest.mark.asyncio
    async def test_existing_record_uses_its_own_parameters(self, mastery_store):
        await mastery_store.save(
            "learner-1",
            SkillMastery("verbs", mastery_probability=0.5, prior=0.5, learn=0.0, guess=0.5, slip=0.5),
        )
        tracker = MasteryTracker(mastery_store)

        p = await tracker.update_mastery("learner-1", "verbs", True)

        assert p == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_update_from_attempt_updates_each_tag_once(self, mastery_store):
        tracker = MasteryTracker(mastery_store)

        results = await tracker.update_from_attempt("learner-1", ["a", "b", "a"], False)

        assert list(results) == ["a", "b"]
        assert results["a"] == pytest.approx(0.03 / 0.59)

    @pytest.mark.asyncio
    async def test_get_mastery_defaults_to_prior(self, mastery_store):
        tracker = MasteryTracker(mastery_store)
        assert await tracker.get_mastery("learner-1", "unknown-skill") == 0.3

    @pytest.mark.asyncio
    async def test_unseen_skill_reports_onboarding_prior(self, mastery_store, preference_provider, repository):
        preference_provider.preferences["learner-1"] = LearnerPreferences(experience="Complete beginner")
        tracker = MasteryTracker(mastery_store, LearnerProfile(preference_provider, repository))

        assert await tracker.get_mastery("learner-1", "greetings") == 0.4
        assert await tracker.get_mastery("learner-2", "greetings") == 0.3

    @pytest.mark.asyncio
    async def test_get_masteries_mixes_stored_and_unseen(self, mastery_store, preference_provider, repository):
        preference_provider.preferences["learner-1"] = LearnerPreferences(experience="Advanced")
        await mastery_store.save("learner-1", SkillMastery("verbs", 0.9, 0.3, 0.2, 0.2, 0.1))
        tracker = MasteryTracker(mastery_store, LearnerProfile(preference_provider, repository))

        masteries = await tracker.get_masteries("learner-1", ["verbs", "food", "verbs"])

        # advanced prior 0.2 for the unseen skill
        assert masteries == {"verbs": 0.9, "food": 0.2}

    @pytest.mark.asyncio
    async def test_low_mastery_skills_strictly_below_threshold(self, mastery_store):
        for tag, p in [("weak", 0.2), ("edge", 0.5), ("strong", 0.9)]:
            await mastery_store.save("learner-1", SkillMastery(tag, p, 0.3, 0.2, 0.2, 0.1))
        tracker = MasteryTracker(mastery_store)

        assert await tracker.get_low_mastery_skills("learner-1", 0.5) == ["weak"]

    @pytest.mark.asyncio
    async def test_reset_removes_all_records(self, mastery_store):
        tracker = MasteryTracker(mastery_store)
        await tracker.update_from_attempt("learner-1", ["a", "b"], True)
        await tracker.update_mastery("learner-2", "a", True)

        deleted = await tracker.reset("learner-1")

        assert deleted == 2
        assert list(mastery_store.records) == [("learner-2", "a")]
