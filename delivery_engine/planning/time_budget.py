"""
Time Budget Planner.

Converts a time budget and the learner's historical per-item durations into a
target item count, and estimates how long each step will take.
"""

from __future__ import annotations

import math
from collections import defaultdict

from loguru import logger

from delivery_engine.core.errors import SchemaMismatchError
from delivery_engine.core.models import Candidate, CandidateKind, DeliveryMethod, TimeAverages
from delivery_engine.ports import ContentRepository

DEFAULT_TEACH_SEC = 30.0
DEFAULT_PRACTICE_SEC = 60.0
DEFAULT_METHOD_SEC: dict[DeliveryMethod, float] = {
    DeliveryMethod.FLASHCARD: 20.0,
    DeliveryMethod.MULTIPLE_CHOICE: 30.0,
    DeliveryMethod.FILL_BLANK: 45.0,
    DeliveryMethod.TEXT_TRANSLATION: 60.0,
    DeliveryMethod.SPEECH_TO_TEXT: 90.0,
    DeliveryMethod.TEXT_TO_SPEECH: 90.0,
}

DEFAULT_BUFFER_RATIO = 0.2
FALLBACK_ITEM_COUNT = 10
MIN_ITEMS_PER_SESSION = 1
MAX_ITEMS_PER_SESSION = 50
HISTORY_SAMPLE_SIZE = 100


def default_time_averages() -> TimeAverages:
    return TimeAverages(
        teach_sec=DEFAULT_TEACH_SEC,
        practice_sec=DEFAULT_PRACTICE_SEC,
        by_method=dict(DEFAULT_METHOD_SEC),
    )


def calculate_item_count(
    time_budget_sec: float,
    avg_time_per_item: float,
    buffer_ratio: float = DEFAULT_BUFFER_RATIO,
) -> int:
    """
    Items that fit the budget after holding back a buffer.

    Returns a fixed 10 when the average is not positive; otherwise the count
    is clamped to [1, 50].
    """
    if avg_time_per_item <= 0:
        return FALLBACK_ITEM_COUNT

    count = math.floor(time_budget_sec * (1 - buffer_ratio) / avg_time_per_item)
    return max(MIN_ITEMS_PER_SESSION, min(count, MAX_ITEMS_PER_SESSION))


def estimate_time(
    candidate: Candidate,
    averages: TimeAverages,
    method: DeliveryMethod | None = None,
) -> float:
    """Seconds for one step: teach average, per-method history, else practice average."""
    if candidate.kind == CandidateKind.TEACHING:
        return averages.teach_sec or DEFAULT_TEACH_SEC

    if method is not None:
        method_avg = averages.by_method.get(method)
        if method_avg:
            return method_avg

    return averages.practice_sec or DEFAULT_PRACTICE_SEC


class TimeBudgetPlanner:
    """Derives a learner's time averages from recent attempt durations."""

    def __init__(self, repository: ContentRepository, sample_size: int = HISTORY_SAMPLE_SIZE):
        self.repository = repository
        self.sample_size = sample_size

    async def get_time_averages(self, learner_id: str) -> TimeAverages:
        """
        Average seconds per practice item, overall and per delivery method.

        Falls back to defaults on a schema mismatch; the teach average is
        always the default since teaching views carry no duration.
        """
        try:
            records = await self.repository.get_recent_durations(learner_id, self.sample_size)
        except SchemaMismatchError as exc:
            logger.warning(f"Time history unavailable for {learner_id}, using defaults: {exc}")
            return default_time_averages()

        by_method: dict[DeliveryMethod, list[float]] = defaultdict(list)
        all_times: list[float] = []
        for record in records:
            if not record.time_to_complete_ms:
                continue
            seconds = record.time_to_complete_ms / 1000
            all_times.append(seconds)
            if record.delivery_method is not None:
                by_method[record.delivery_method].append(seconds)

        practice_sec = sum(all_times) / len(all_times) if all_times else DEFAULT_PRACTICE_SEC
        method_avgs = {m: sum(t) / len(t) for m, t in by_method.items()}

        return TimeAverages(
            teach_sec=DEFAULT_TEACH_SEC,
            practice_sec=practice_sec or DEFAULT_PRACTICE_SEC,
            by_method=method_avgs or dict(DEFAULT_METHOD_SEC),
        )

    def target_item_count(
        self,
        averages: TimeAverages,
        time_budget_sec: float | None,
        default_count: int = 15,
        buffer_ratio: float = DEFAULT_BUFFER_RATIO,
    ) -> int:
        """Item count for a budget, or the default count when there is none."""
        if not time_budget_sec:
            return default_count
        return calculate_item_count(time_budget_sec, averages.per_item_sec, buffer_ratio)
