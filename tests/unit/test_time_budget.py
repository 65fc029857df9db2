"""
Unit tests for time budget planning.
"""

import pytest

from delivery_engine.core.errors import SchemaMismatchError
from delivery_engine.core.models import DeliveryMethod, TimeAverages
from delivery_engine.planning.time_budget import (
    DEFAULT_METHOD_SEC,
    TimeBudgetPlanner,
    calculate_item_count,
    default_time_averages,
    estimate_time,
)


class TestCalculateItemCount:
    def test_buffered_budget(self):
        # 300s * 0.8 / 60s
        assert calculate_item_count(300, 60) == 4

    def test_custom_buffer(self):
        assert calculate_item_count(300, 60, buffer_ratio=0.0) == 5

    @pytest.mark.parametrize("avg", [0, -5])
    def test_non_positive_average_uses_fallback(self, avg):
        assert calculate_item_count(300, avg) == 10

    def test_clamped_to_bounds(self):
        assert calculate_item_count(10, 60) == 1
        assert calculate_item_count(100_000, 1) == 50

    @pytest.mark.parametrize("avg", [0.5, 7, 45.5, 60, 240])
    def test_count_never_decreases_as_budget_grows(self, avg):
        previous = 0
        for budget in range(0, 7200, 15):
            count = calculate_item_count(budget, avg)
            assert 1 <= count <= 50
            assert count >= previous
            previous = count


class TestEstimateTime:
    def test_teaching_uses_teach_average(self, make_teaching):
        assert estimate_time(make_teaching("t1"), default_time_averages()) == 30.0

    def test_method_history_wins(self, make_question):
        averages = TimeAverages(teach_sec=30, practice_sec=50, by_method={DeliveryMethod.FILL_BLANK: 12.0})
        assert estimate_time(make_question("q1"), averages, DeliveryMethod.FILL_BLANK) == 12.0

    def test_falls_back_to_practice_average(self, make_question):
        averages = TimeAverages(teach_sec=30, practice_sec=50)
        assert estimate_time(make_question("q1"), averages, DeliveryMethod.FLASHCARD) == 50
        assert estimate_time(make_question("q1"), averages) == 50


class TestTimeBudgetPlanner:
    @pytest.mark.asyncio
    async def test_averages_from_history(self, repository):
        repository.add_performance("learner-1", "q1", time_to_complete_ms=20_000, delivery_method=DeliveryMethod.FLASHCARD)
        repository.add_performance(
            "learner-1", "q2", time_to_complete_ms=40_000, delivery_method=DeliveryMethod.MULTIPLE_CHOICE
        )
        repository.add_performance("learner-1", "q3", time_to_complete_ms=30_000)

        averages = await TimeBudgetPlanner(repository).get_time_averages("learner-1")

        assert averages.teach_sec == 30.0
        assert averages.practice_sec == pytest.approx(30.0)
        assert averages.by_method == {DeliveryMethod.FLASHCARD: 20.0, DeliveryMethod.MULTIPLE_CHOICE: 40.0}

    @pytest.mark.asyncio
    async def test_no_history_uses_defaults(self, repository):
        averages = await TimeBudgetPlanner(repository).get_time_averages("learner-1")

        assert averages.practice_sec == 60.0
        assert averages.by_method == DEFAULT_METHOD_SEC

    @pytest.mark.asyncio
    async def test_schema_mismatch_uses_defaults(self, repository):
        repository.failures["get_recent_durations"] = SchemaMismatchError("no such column: time_to_complete_ms")

        averages = await TimeBudgetPlanner(repository).get_time_averages("learner-1")

        assert averages == default_time_averages()

    def test_target_item_count(self, repository):
        planner = TimeBudgetPlanner(repository)
        averages = default_time_averages()  # per item (30 + 60) / 2

        assert planner.target_item_count(averages, None) == 15
        assert planner.target_item_count(averages, None, default_count=8) == 8
        assert planner.target_item_count(averages, 300) == 5
