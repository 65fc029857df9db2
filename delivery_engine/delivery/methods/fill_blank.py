"""
Fill-in-the-blank strategy. Options, when present, enable tap-to-fill.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from delivery_engine.core.models import DeliveryMethod, PracticeStepItem, QuestionRecord

from . import register
from .base import parse_options


@register
class FillBlankStrategy:
    method = DeliveryMethod.FILL_BLANK
    exercise_type = "grammar"
    required_fields = ("text", "answer")

    def build_step(
        self,
        question: QuestionRecord,
        data: Mapping[str, Any],
        lesson_id: str,
    ) -> PracticeStepItem:
        teaching = question.teaching
        text = data.get("text")
        return PracticeStepItem(
            question_id=question.id,
            teaching_id=teaching.id,
            lesson_id=lesson_id,
            delivery_method=self.method,
            prompt=text or teaching.phrase,
            text=text,
            answer=data.get("answer"),
            hint=data.get("hint"),
            options=parse_options(data.get("options")),
        )
