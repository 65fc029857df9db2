"""
Step builder.

Turns selected candidates into session step items: teach items from teaching
records, practice items through the delivery-method strategy registry, and
the human-readable rationale/title attached to steps and plans.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from loguru import logger

from delivery_engine.core.errors import SchemaMismatchError
from delivery_engine.core.models import (
    Candidate,
    CandidateKind,
    DeliveryMethod,
    PracticeStepItem,
    QuestionRecord,
    SessionContext,
    SessionMode,
    TeachingRecord,
    TeachStepItem,
)
from delivery_engine.delivery.methods import STRATEGIES, DeliveryMethodRegistry
from delivery_engine.delivery.methods.base import missing_fields
from delivery_engine.ports import ContentRepository

QUICK_WIN_DIFFICULTY = 0.2
CONSOLIDATION_ERROR_SCORE = 2


def build_teach_item(teaching: TeachingRecord) -> TeachStepItem:
    return TeachStepItem(
        teaching_id=teaching.id,
        lesson_id=teaching.lesson_id,
        phrase=teaching.phrase,
        translation=teaching.translation,
        emoji=teaching.emoji or None,
        tip=teaching.tip or None,
        knowledge_level=teaching.knowledge_level,
    )


def build_generic_item(
    question: QuestionRecord,
    lesson_id: str | None = None,
    method: DeliveryMethod | None = None,
    data: Mapping[str, Any] | None = None,
) -> PracticeStepItem:
    """Method-agnostic practice item: the phrase with its translation as the answer."""
    data = data or {}
    return PracticeStepItem(
        question_id=question.id,
        teaching_id=question.teaching_id,
        lesson_id=lesson_id or question.lesson_id,
        delivery_method=method,
        prompt=data.get("prompt") or question.teaching.phrase,
        answer=data.get("answer") or question.teaching.translation,
        hint=data.get("hint"),
    )


def build_rationale(candidate: Candidate, prioritized_skills: Sequence[str] = ()) -> str:
    """Why a step is in the plan, first matching reason wins."""
    if candidate.due_score > 0:
        return "Due review"

    target = next((tag for tag in candidate.skill_tags if tag in prioritized_skills), None)
    if target:
        return f"Targets low mastery skill: {target}"

    if candidate.error_score >= CONSOLIDATION_ERROR_SCORE:
        return "Consolidation after recent errors"

    if candidate.kind == CandidateKind.QUESTION and candidate.difficulty <= QUICK_WIN_DIFFICULTY:
        return "Scaffolding: quick win"

    if candidate.kind == CandidateKind.TEACHING:
        return "Introducing new phrase"

    return "Next practice item"


def build_title(context: SessionContext) -> str:
    if context.lesson_id:
        return "Lesson Session"
    if context.mode == SessionMode.REVIEW:
        return "Review Session"
    if context.mode == SessionMode.LEARN:
        return "Learning Session"
    return "Practice Session"


class StepBuilder:
    """
    Builds practice items for a chosen delivery method.

    Missing or incomplete variant data never aborts the plan: the condition is
    logged with its context and a best-effort item is returned.
    """

    def __init__(self, repository: ContentRepository, registry: DeliveryMethodRegistry = STRATEGIES):
        self.repository = repository
        self.registry = registry

    async def _variant_data(self, question: QuestionRecord, method: DeliveryMethod) -> Mapping[str, Any] | None:
        try:
            return await self.repository.get_variant_data(question.id, method)
        except SchemaMismatchError as exc:
            logger.warning(f"Variant data unavailable for {question.id}/{method.value}: {exc}")
            return None

    async def build_practice_item(
        self,
        question: QuestionRecord,
        method: DeliveryMethod,
        lesson_id: str | None = None,
    ) -> PracticeStepItem:
        """
        Build a practice item for a question via the method's strategy.

        Args:
            question: Question with its parent teaching
            method: Delivery method chosen by the modality selector
            lesson_id: Lesson the step is delivered under (defaults to the teaching's)

        Returns:
            PracticeStepItem, possibly missing method-specific fields
        """
        lesson_id = lesson_id or question.lesson_id
        context = {
            "question_id": question.id,
            "teaching_id": question.teaching_id,
            "lesson_id": lesson_id,
            "delivery_method": method.value,
        }

        data = await self._variant_data(question, method)
        if data is None:
            logger.bind(**context).error(f"No variant data for question {question.id}: {context}")
            data = {}

        if not self.registry.has(method):
            logger.warning(f"No strategy registered for {method.value}, using generic step")
            return build_generic_item(question, lesson_id, method, data)

        strategy = self.registry.get(method)
        item = strategy.build_step(question, data, lesson_id)

        missing = missing_fields(item, strategy.required_fields)
        if missing:
            context.update(missing=missing, data_keys=sorted(data))
            logger.bind(**context).error(
                f"{method.value} question {question.id} missing required data: {context}"
            )
        return item
