"""
Candidate Generator.

Builds the per-request candidate pools:
- Review candidates: questions whose latest SRS row is due
- New candidates: questions in scope the learner has never attempted
- Teaching candidates: unseen parent teachings of selected new questions

Each candidate is enriched with skill tags, exercise type, difficulty and the
delivery methods its question offers.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from loguru import logger

from delivery_engine.core.difficulty import adjust_for_mastery, base_difficulty
from delivery_engine.core.errors import SchemaMismatchError
from delivery_engine.core.models import (
    Candidate,
    DeliveryMethod,
    PerformanceRecord,
    QuestionCandidate,
    QuestionRecord,
    TeachingCandidate,
)
from delivery_engine.delivery.methods import STRATEGIES
from delivery_engine.ports import ContentRepository

RECENT_ATTEMPT_WINDOW = 5
ERROR_SCORE_THRESHOLD = 80  # attempts scoring below this count as errors
DEFAULT_AVERAGE_SCORE = 50.0
MS_PER_HOUR = 60 * 60 * 1000

# First match wins when a question offers several methods
EXERCISE_TYPE_PRIORITY: tuple[DeliveryMethod, ...] = (
    DeliveryMethod.SPEECH_TO_TEXT,
    DeliveryMethod.TEXT_TO_SPEECH,
    DeliveryMethod.TEXT_TRANSLATION,
    DeliveryMethod.FILL_BLANK,
    DeliveryMethod.MULTIPLE_CHOICE,
    DeliveryMethod.FLASHCARD,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() * 1000


def determine_exercise_type(methods: Iterable[DeliveryMethod], tip: str | None = None) -> str:
    """
    Classify a question by its delivery methods, then by teaching tip keywords.

    A method maps to the exercise type its registered strategy declares.

    Returns one of: speaking, translation, grammar, vocabulary, practice.
    """
    available = set(methods)
    for method in EXERCISE_TYPE_PRIORITY:
        if method in available and STRATEGIES.has(method):
            return STRATEGIES.get(method).exercise_type

    if tip:
        tip_lower = tip.lower()
        if "grammar" in tip_lower or "rule" in tip_lower:
            return "grammar"
        if "vocabulary" in tip_lower or "word" in tip_lower:
            return "vocabulary"

    return "practice"


def merge_skill_tags(*groups: Iterable[str]) -> tuple[str, ...]:
    """Union of tag groups, first-seen order, empty names dropped."""
    return tuple(dict.fromkeys(tag for group in groups for tag in group if tag))


def due_score(next_review_due: datetime, now: datetime) -> float:
    """Hours past the scheduled review time, never negative."""
    return max(0.0, _elapsed_ms(now, next_review_due) / MS_PER_HOUR)


class CandidateGenerator:
    """
    Builds review, new and teaching candidates from the content repository.

    A SchemaMismatchError from the repository degrades to an empty pool with a
    warning; any other error propagates.
    """

    def __init__(
        self,
        repository: ContentRepository,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.clock = clock

    async def _scope_question_ids(
        self, lesson_id: str | None, module_id: str | None
    ) -> list[str] | None:
        """Question ids for a lesson/module scope, or None when unscoped."""
        if not lesson_id and not module_id:
            return None
        return await self.repository.get_question_ids_in_scope(lesson_id, module_id)

    # ------------------------------------------------------------------
    # Review candidates
    # ------------------------------------------------------------------

    async def get_review_candidates(
        self,
        learner_id: str,
        lesson_id: str | None = None,
        module_id: str | None = None,
        now: datetime | None = None,
    ) -> list[QuestionCandidate]:
        """
        Questions whose latest performance row is due for review.

        Args:
            learner_id: Learner identifier
            lesson_id: Optional lesson scope
            module_id: Optional module scope (ignored when lesson_id is set)
            now: Reference time (defaults to the generator clock)

        Returns:
            Review candidates, due_score > 0 for anything overdue
        """
        now = now or self.clock()
        try:
            return await self._build_review_candidates(learner_id, lesson_id, module_id, now)
        except SchemaMismatchError as exc:
            logger.warning(f"Review candidates unavailable for {learner_id} (schema mismatch): {exc}")
            return []

    async def _build_review_candidates(
        self,
        learner_id: str,
        lesson_id: str | None,
        module_id: str | None,
        now: datetime,
    ) -> list[QuestionCandidate]:
        scope = await self._scope_question_ids(lesson_id, module_id)
        if scope is not None and not scope:
            logger.debug(f"Empty scope lesson={lesson_id} module={module_id}")
            return []

        performances = await self.repository.get_performances(learner_id, scope)
        if not performances:
            return []

        # Rows arrive newest first; the first row per question is the latest
        latest: dict[str, PerformanceRecord] = {}
        for perf in performances:
            latest.setdefault(perf.question_id, perf)

        due = [
            perf
            for perf in latest.values()
            if perf.next_review_due is not None and perf.next_review_due <= now
        ]
        if not due:
            return []

        questions = {q.id: q for q in await self.repository.get_questions([p.question_id for p in due])}
        attempts = await asyncio.gather(
            *(
                self.repository.get_recent_attempts(learner_id, perf.question_id, RECENT_ATTEMPT_WINDOW)
                for perf in due
            )
        )

        candidates: list[QuestionCandidate] = []
        for perf, recent in zip(due, attempts):
            question = questions.get(perf.question_id)
            if question is None:
                logger.debug(f"Due question {perf.question_id} has no content record, skipping")
                continue
            candidates.append(self._review_candidate(question, perf, recent, now))

        logger.debug(f"Review candidates for {learner_id}: {len(candidates)} of {len(latest)} tracked")
        return candidates

    def _review_candidate(
        self,
        question: QuestionRecord,
        perf: PerformanceRecord,
        recent: list[PerformanceRecord],
        now: datetime,
    ) -> QuestionCandidate:
        scores = [a.score for a in recent]
        error_score = sum(1 for s in scores if s < ERROR_SCORE_THRESHOLD)
        average = sum(scores) / len(scores) if scores else DEFAULT_AVERAGE_SCORE
        mastery = average / 100

        last_seen = recent[0].created_at if recent else (perf.next_review_due or now)
        teaching = question.teaching

        return QuestionCandidate(
            id=question.id,
            teaching_id=teaching.id,
            lesson_id=teaching.lesson_id,
            due_score=due_score(perf.next_review_due or now, now),
            error_score=error_score,
            time_since_last_seen=_elapsed_ms(now, last_seen),
            skill_tags=merge_skill_tags(question.skill_tags, teaching.skill_tags),
            exercise_type=determine_exercise_type(question.delivery_methods, teaching.tip),
            difficulty=adjust_for_mastery(base_difficulty(teaching.knowledge_level), mastery),
            estimated_mastery=mastery,
            delivery_methods=tuple(question.delivery_methods),
        )

    # ------------------------------------------------------------------
    # New candidates
    # ------------------------------------------------------------------

    async def get_new_candidates(
        self,
        learner_id: str,
        lesson_id: str | None = None,
        module_id: str | None = None,
    ) -> list[QuestionCandidate]:
        """Questions in scope the learner has never attempted."""
        try:
            return await self._build_new_candidates(learner_id, lesson_id, module_id)
        except SchemaMismatchError as exc:
            logger.warning(f"New candidates unavailable for {learner_id} (schema mismatch): {exc}")
            return []

    async def _build_new_candidates(
        self, learner_id: str, lesson_id: str | None, module_id: str | None
    ) -> list[QuestionCandidate]:
        scope, attempted = await asyncio.gather(
            self.repository.get_question_ids_in_scope(lesson_id, module_id),
            self.repository.get_attempted_question_ids(learner_id),
        )
        unattempted = [qid for qid in scope if qid not in attempted]
        if not unattempted:
            return []

        questions = await self.repository.get_questions(unattempted)
        return [self._new_candidate(q) for q in questions]

    @staticmethod
    def _new_candidate(question: QuestionRecord) -> QuestionCandidate:
        teaching = question.teaching
        return QuestionCandidate(
            id=question.id,
            teaching_id=teaching.id,
            lesson_id=teaching.lesson_id,
            due_score=0.0,
            error_score=0,
            time_since_last_seen=math.inf,
            skill_tags=merge_skill_tags(question.skill_tags, teaching.skill_tags),
            exercise_type=determine_exercise_type(question.delivery_methods, teaching.tip),
            difficulty=base_difficulty(teaching.knowledge_level),
            estimated_mastery=0.0,
            delivery_methods=tuple(question.delivery_methods),
        )

    # ------------------------------------------------------------------
    # Teaching candidates
    # ------------------------------------------------------------------

    async def get_teaching_candidates(
        self,
        questions: Iterable[Candidate],
        seen_teaching_ids: set[str],
        lesson_id: str | None = None,
        module_id: str | None = None,
    ) -> list[TeachingCandidate]:
        """
        Unseen parent teachings of the given questions, limited to the scope.

        Teachings the learner already completed are excluded.
        """
        teaching_ids = list(dict.fromkeys(q.teaching_id for q in questions if q.teaching_id))
        if not teaching_ids:
            return []

        try:
            teachings = await self.repository.get_teachings(teaching_ids)
        except SchemaMismatchError as exc:
            logger.warning(f"Teaching candidates unavailable (schema mismatch): {exc}")
            return []

        candidates: list[TeachingCandidate] = []
        for teaching in teachings:
            if teaching.id in seen_teaching_ids:
                continue
            if lesson_id and teaching.lesson_id != lesson_id:
                continue
            if not lesson_id and module_id and teaching.module_id != module_id:
                continue
            candidates.append(
                TeachingCandidate(
                    id=teaching.id,
                    teaching_id=teaching.id,
                    lesson_id=teaching.lesson_id,
                    skill_tags=merge_skill_tags(teaching.skill_tags),
                    exercise_type="teaching",
                    difficulty=base_difficulty(teaching.knowledge_level),
                    title=teaching.translation,
                    prompt=teaching.phrase,
                )
            )
        return candidates
