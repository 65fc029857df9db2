"""
Listening/speaking strategies.

- speech_to_text: learner says the phrase, answer is what the recognizer expects
- text_to_speech: learner hears the phrase; the translation is shown for context
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from delivery_engine.core.models import DeliveryMethod, PracticeStepItem, QuestionRecord

from . import register


@register
class SpeechToTextStrategy:
    method = DeliveryMethod.SPEECH_TO_TEXT
    exercise_type = "speaking"
    required_fields = ("answer",)

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
            answer=data.get("answer"),
        )


@register
class TextToSpeechStrategy:
    method = DeliveryMethod.TEXT_TO_SPEECH
    exercise_type = "speaking"
    required_fields = ("answer",)

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
            answer=data.get("answer"),
            translation=teaching.translation,
        )
