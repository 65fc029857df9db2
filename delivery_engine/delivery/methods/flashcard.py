"""
Flashcard strategy. Same source/answer shape as translation, self-graded.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from delivery_engine.core.models import DeliveryMethod, PracticeStepItem, QuestionRecord

from . import register


@register
class FlashcardStrategy:
    method = DeliveryMethod.FLASHCARD
    exercise_type = "vocabulary"
    required_fields = ("source", "answer")

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
            source=data.get("source"),
            answer=data.get("answer"),
            hint=data.get("hint"),
        )
