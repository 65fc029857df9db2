"""
Progress recording.

Applies the side effects of a learner answering a question or finishing a
lesson: SRS scheduling, the performance log, BKT mastery, and invalidation
of cached session plans that no longer reflect the learner's state.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from loguru import logger

from delivery_engine.core.errors import UnknownQuestionError
from delivery_engine.core.models import AttemptResult, PerformanceRecord, SrsState
from delivery_engine.learning.mastery_tracker import MasteryTracker
from delivery_engine.planning.candidate_generator import merge_skill_tags
from delivery_engine.planning.plan_cache import SessionPlanCache
from delivery_engine.ports import ContentRepository, SrsScheduler


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AttemptOutcome:
    """What recording one attempt changed."""

    question_id: str
    srs: SrsState
    mastery: dict[str, float]
    plans_invalidated: int


class ProgressRecorder:
    """Records attempts and completions for a learner."""

    def __init__(
        self,
        repository: ContentRepository,
        srs: SrsScheduler,
        mastery: MasteryTracker,
        cache: SessionPlanCache,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.srs = srs
        self.mastery = mastery
        self.cache = cache
        self.clock = clock

    async def record_attempt(
        self, learner_id: str, question_id: str, result: AttemptResult
    ) -> AttemptOutcome:
        """
        Record one answered question.

        Order: SRS schedule, append performance row, BKT update for every
        skill tag on the question and its teaching, then drop the learner's
        cached plans.

        Raises:
            UnknownQuestionError: The question does not exist
        """
        questions = await self.repository.get_questions([question_id])
        if not questions:
            raise UnknownQuestionError(f"Unknown question: {question_id}")
        question = questions[0]

        state = await self.srs.schedule(learner_id, question_id, result)
        await self.repository.append_performance(
            learner_id,
            PerformanceRecord(
                question_id=question_id,
                score=result.score,
                created_at=self.clock(),
                next_review_due=state.next_review_due,
                time_to_complete_ms=result.time_ms,
                delivery_method=result.delivery_method,
                interval_days=state.interval_days,
                stability=state.stability,
                difficulty=state.difficulty,
                repetitions=state.repetitions,
            ),
        )

        tags = merge_skill_tags(question.skill_tags, question.teaching.skill_tags)
        mastery = await self.mastery.update_from_attempt(learner_id, tags, result.correct)
        invalidated = self.cache.invalidate(learner_id)

        logger.info(
            f"Attempt {learner_id}/{question_id}: correct={result.correct} score={result.score} "
            f"next_due={state.next_review_due.isoformat()} skills={len(mastery)}"
        )
        return AttemptOutcome(
            question_id=question_id,
            srs=state,
            mastery=mastery,
            plans_invalidated=invalidated,
        )

    async def complete_teachings(
        self, learner_id: str, lesson_id: str, teaching_ids: Iterable[str]
    ) -> int:
        """Mark teachings seen mid-lesson; only that lesson's cached plans are dropped."""
        ids = list(teaching_ids)
        await self.repository.mark_teachings_completed(learner_id, ids, self.clock())
        return self.cache.invalidate_lesson(learner_id, lesson_id)

    async def complete_lesson(
        self, learner_id: str, lesson_id: str, teaching_ids: Iterable[str]
    ) -> int:
        """Mark a lesson's teachings completed and drop all of the learner's cached plans."""
        ids = list(teaching_ids)
        await self.repository.mark_teachings_completed(learner_id, ids, self.clock())
        invalidated = self.cache.invalidate(learner_id)
        logger.info(f"Lesson {lesson_id} completed by {learner_id} ({len(ids)} teachings)")
        return invalidated
