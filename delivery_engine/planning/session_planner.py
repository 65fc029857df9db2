"""
Session planner: turns a learner's history into an ordered session plan.

Pipeline for create_plan():
1. Gather preferences, time averages, seen teachings, weak skills, method
   scores and both candidate pools concurrently
2. Derive the target item count from the time budget
3. Select candidates per mode and rank them
4. Sequence them (teach-then-test + light interleaving, or full review
   interleaving)
5. Pick a delivery method per practice item and build step items
6. Append the recap step and metadata
"""

from __future__ import annotations

import asyncio
import random
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from loguru import logger

from delivery_engine.core.errors import SchemaMismatchError
from delivery_engine.core.models import (
    Candidate,
    CandidateKind,
    DeliveryMethod,
    RecapStepItem,
    RecapSummary,
    SessionContext,
    SessionMetadata,
    SessionMode,
    SessionPlan,
    SessionStep,
    StepType,
    TimeAverages,
)
from delivery_engine.delivery.step_builder import (
    StepBuilder,
    build_generic_item,
    build_rationale,
    build_teach_item,
    build_title,
)
from delivery_engine.learning.mastery_tracker import MasteryTracker
from delivery_engine.learning.preferences import LearnerProfile
from delivery_engine.planning.candidate_generator import CandidateGenerator
from delivery_engine.planning.interleaver import compose_learn, compose_review
from delivery_engine.planning.modality_selector import select_modality
from delivery_engine.planning.selection import select_for_mode
from delivery_engine.planning.time_budget import TimeBudgetPlanner, estimate_time
from delivery_engine.ports import ContentRepository

if TYPE_CHECKING:
    from config import Settings

RECAP_STEP_SEC = 10
XP_PER_PRACTICE_STEP = 15


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PlannerTunables:
    """Engine knobs; defaults match config.Settings."""

    default_target_item_count: int = 15
    time_buffer_ratio: float = 0.2
    max_same_type_in_row: int = 2
    low_mastery_threshold: float = 0.5
    weighted_selection_probability: float = 0.85
    review_batch_floor: int = 10
    mixed_review_ratio: float = 0.7

    @classmethod
    def from_settings(cls, settings: Settings) -> PlannerTunables:
        return cls(
            default_target_item_count=settings.default_target_item_count,
            time_buffer_ratio=settings.time_buffer_ratio,
            max_same_type_in_row=settings.max_same_type_in_row,
            low_mastery_threshold=settings.low_mastery_threshold,
            weighted_selection_probability=settings.weighted_selection_probability,
            review_batch_floor=settings.review_batch_floor,
            mixed_review_ratio=settings.mixed_review_ratio,
        )


class SessionPlanner:
    """
    Composes SessionPlans. Stateless apart from its collaborators.

    Args:
        repository: Content/persistence collaborator
        mastery: BKT mastery tracker (weak-skill lookup)
        profile: Learner preference resolver
        rng: Random source for modality selection
        clock: Wall-clock source for due-ness and plan timestamps
        tunables: Engine knobs
    """

    def __init__(
        self,
        repository: ContentRepository,
        mastery: MasteryTracker,
        profile: LearnerProfile,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utcnow,
        tunables: PlannerTunables | None = None,
    ):
        self.repository = repository
        self.mastery = mastery
        self.profile = profile
        self.rng = rng or random.Random()
        self.clock = clock
        self.tunables = tunables or PlannerTunables()

        self.candidates = CandidateGenerator(repository, clock=clock)
        self.time_budget = TimeBudgetPlanner(repository)
        self.step_builder = StepBuilder(repository)

    # ------------------------------------------------------------------
    # Degrading reads
    # ------------------------------------------------------------------

    async def _seen_teaching_ids(self, learner_id: str) -> set[str]:
        try:
            return await self.repository.get_seen_teaching_ids(learner_id)
        except SchemaMismatchError as exc:
            logger.warning(f"Seen teachings unavailable for {learner_id}: {exc}")
            return set()

    async def _low_mastery_skills(self, learner_id: str) -> list[str]:
        try:
            return await self.mastery.get_low_mastery_skills(learner_id, self.tunables.low_mastery_threshold)
        except SchemaMismatchError as exc:
            logger.warning(f"Mastery unavailable for {learner_id}: {exc}")
            return []

    @staticmethod
    async def _records(fetch: Callable[[list[str]], Awaitable[list]], ids: list[str]) -> list:
        """Content records for step building; empty on no ids or a schema mismatch."""
        if not ids:
            return []
        try:
            return await fetch(ids)
        except SchemaMismatchError as exc:
            logger.warning(f"Content records unavailable for {len(ids)} ids: {exc}")
            return []

    # ------------------------------------------------------------------
    # Plan composition
    # ------------------------------------------------------------------

    async def create_plan(self, learner_id: str, context: SessionContext) -> SessionPlan:
        """
        Build a complete session plan for a learner.

        Args:
            learner_id: Learner identifier
            context: Mode plus optional time budget and lesson/module scope

        Returns:
            Immutable SessionPlan; always ends with exactly one recap step

        Raises:
            UpstreamError: Data access failed for a reason other than a
                schema mismatch
        """
        now = self.clock()
        tun = self.tunables

        prefs, averages, seen_teaching_ids, prioritized, method_scores, reviews, new = await asyncio.gather(
            self.profile.get_preferences(learner_id),
            self.time_budget.get_time_averages(learner_id),
            self._seen_teaching_ids(learner_id),
            self._low_mastery_skills(learner_id),
            self.profile.get_delivery_method_scores(learner_id),
            self.candidates.get_review_candidates(learner_id, context.lesson_id, context.module_id, now=now),
            self.candidates.get_new_candidates(learner_id, context.lesson_id, context.module_id),
        )

        budget = context.time_budget_sec or LearnerProfile.session_budget_sec(prefs)
        target = self.time_budget.target_item_count(
            averages, budget, tun.default_target_item_count, tun.time_buffer_ratio
        )

        selected = select_for_mode(
            context.mode,
            reviews,
            new,
            target,
            prioritized,
            prefs.challenge_weight,
            tun.mixed_review_ratio,
        )

        if context.mode == SessionMode.REVIEW:
            sequence = compose_review(selected, target, tun.max_same_type_in_row, tun.review_batch_floor)
        else:
            new_questions = [c for c in selected if c.kind == CandidateKind.QUESTION and c.due_score == 0]
            selected_reviews = [c for c in selected if c.due_score > 0]
            teachings = await self.candidates.get_teaching_candidates(
                new_questions, seen_teaching_ids, context.lesson_id, context.module_id
            )
            sequence = compose_learn(
                new_questions, teachings, selected_reviews, seen_teaching_ids, tun.max_same_type_in_row
            )

        steps, methods_used = await self._build_steps(sequence, averages, method_scores, prioritized)
        plan = self._assemble(learner_id, context, now, steps, methods_used, sequence, len(reviews), len(new))

        logger.info(
            f"Plan {plan.id} for {learner_id}: mode={context.mode.value} target={target} "
            f"steps={plan.metadata.total_steps} (teach={plan.metadata.teach_steps}, "
            f"practice={plan.metadata.practice_steps}) est={plan.metadata.total_estimated_time_sec:.0f}s"
        )
        return plan

    async def _build_steps(
        self,
        sequence: list[Candidate],
        averages: TimeAverages,
        method_scores: dict[DeliveryMethod, float],
        prioritized: list[str],
    ) -> tuple[list[SessionStep], list[DeliveryMethod]]:
        teaching_ids = [c.id for c in sequence if c.kind == CandidateKind.TEACHING]
        question_ids = [c.id for c in sequence if c.kind == CandidateKind.QUESTION]
        teaching_records, question_records = await asyncio.gather(
            self._records(self.repository.get_teachings, teaching_ids),
            self._records(self.repository.get_questions, question_ids),
        )
        teachings = {t.id: t for t in teaching_records}
        questions = {q.id: q for q in question_records}

        steps: list[SessionStep] = []
        methods_used: list[DeliveryMethod] = []

        for candidate in sequence:
            rationale = build_rationale(candidate, prioritized)

            if candidate.kind == CandidateKind.TEACHING:
                teaching = teachings.get(candidate.id)
                if teaching is None:
                    logger.warning(f"Teaching {candidate.id} vanished before step build, skipping")
                    continue
                steps.append(
                    SessionStep(
                        step_number=len(steps) + 1,
                        type=StepType.TEACH,
                        item=build_teach_item(teaching),
                        estimated_time_sec=estimate_time(candidate, averages),
                        rationale=rationale,
                    )
                )
                continue

            question = questions.get(candidate.id)
            if question is None:
                logger.warning(f"Question {candidate.id} vanished before step build, skipping")
                continue

            method = select_modality(
                candidate.delivery_methods,
                method_scores,
                self.rng,
                self.tunables.weighted_selection_probability,
            )
            if method is None:
                logger.warning(f"Question {candidate.id} has no delivery methods, using generic step")
                item = build_generic_item(question, candidate.lesson_id)
            else:
                item = await self.step_builder.build_practice_item(question, method, candidate.lesson_id)
                if method not in methods_used:
                    methods_used.append(method)

            steps.append(
                SessionStep(
                    step_number=len(steps) + 1,
                    type=StepType.PRACTICE,
                    item=item,
                    estimated_time_sec=estimate_time(candidate, averages, method),
                    delivery_method=method,
                    rationale=rationale,
                )
            )

        return steps, methods_used

    def _assemble(
        self,
        learner_id: str,
        context: SessionContext,
        now: datetime,
        steps: list[SessionStep],
        methods_used: list[DeliveryMethod],
        sequence: list[Candidate],
        review_pool_size: int,
        new_pool_size: int,
    ) -> SessionPlan:
        practice_count = sum(1 for s in steps if s.type == StepType.PRACTICE)
        teach_count = sum(1 for s in steps if s.type == StepType.TEACH)
        potential_xp = practice_count * XP_PER_PRACTICE_STEP
        content_time = sum(s.estimated_time_sec for s in steps)

        recap = SessionStep(
            step_number=len(steps) + 1,
            type=StepType.RECAP,
            item=RecapStepItem(summary=RecapSummary(total_items=len(steps), xp_earned=potential_xp)),
            estimated_time_sec=RECAP_STEP_SEC,
        )
        all_steps = (*steps, recap)

        topics = tuple(dict.fromkeys(t for c in sequence if (t := c.teaching_id or c.lesson_id)))
        metadata = SessionMetadata(
            total_estimated_time_sec=content_time + RECAP_STEP_SEC,
            total_steps=len(all_steps),
            teach_steps=teach_count,
            practice_steps=practice_count,
            recap_steps=1,
            potential_xp=potential_xp,
            due_reviews_included=review_pool_size,
            new_items_included=new_pool_size,
            topics_covered=topics,
            delivery_methods_used=tuple(methods_used),
        )

        return SessionPlan(
            id=f"session-{learner_id}-{uuid.uuid4().hex[:12]}",
            kind=context.mode,
            steps=all_steps,
            metadata=metadata,
            created_at=now,
            lesson_id=context.lesson_id,
            title=build_title(context),
        )
