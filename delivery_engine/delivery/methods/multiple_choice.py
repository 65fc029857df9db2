"""
Multiple-choice strategy.

Shows the phrase (or a source text for translation-style MCQ) with a set of
options. Options and the correct option id come from the question variant;
without them the client can only render placeholders.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from delivery_engine.core.models import DeliveryMethod, PracticeStepItem, QuestionRecord

from . import register
from .base import parse_options


@register
class MultipleChoiceStrategy:
    method = DeliveryMethod.MULTIPLE_CHOICE
    exercise_type = "vocabulary"
    required_fields = ("options", "correct_option_id")

    def build_step(
        self,
        question: QuestionRecord,
        data: Mapping[str, Any],
        lesson_id: str,
    ) -> PracticeStepItem:
        teaching = question.teaching
        return PracticeStepItem(
            question_id=question.id,
            teaching_id=teaching.id,
            lesson_id=lesson_id,
            delivery_method=self.method,
            prompt=data.get("prompt") or teaching.phrase,
            options=parse_options(data.get("options")),
            correct_option_id=data.get("correct_option_id") or data.get("correctOptionId"),
            source_text=data.get("source_text") or data.get("sourceText"),
        )
