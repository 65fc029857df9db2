"""
Text-translation strategy.

Source defaults to the learning-language phrase and the expected answer to
its translation, so a question without variant data is still playable.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from delivery_engine.core.models import DeliveryMethod, PracticeStepItem, QuestionRecord

from . import register

TRANSLATION_PROMPT = "Translate this phrase"


@register
class TextTranslationStrategy:
    method = DeliveryMethod.TEXT_TRANSLATION
    exercise_type = "translation"
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
            prompt=TRANSLATION_PROMPT,
            source=data.get("source") or teaching.phrase,
            answer=data.get("answer") or teaching.translation,
            hint=data.get("hint"),
        )
