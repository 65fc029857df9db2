"""
Base protocol and helpers for delivery-method strategies.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, ClassVar, Protocol

from delivery_engine.core.models import ChoiceOption, DeliveryMethod, PracticeStepItem, QuestionRecord


class DeliveryMethodStrategy(Protocol):
    """Builds the practice step for one delivery method."""

    method: ClassVar[DeliveryMethod]
    exercise_type: ClassVar[str]
    required_fields: ClassVar[tuple[str, ...]]

    def build_step(
        self,
        question: QuestionRecord,
        data: Mapping[str, Any],
        lesson_id: str,
    ) -> PracticeStepItem:
        """Populate a practice item from the question and its variant data."""
        ...


def parse_options(raw: Any) -> tuple[ChoiceOption, ...] | None:
    """
    Normalize option payloads to ChoiceOption tuples.

    Accepts dicts with id/label (or text) keys, or bare strings. Returns None
    for a missing or empty list.
    """
    if not raw:
        return None
    options = []
    for i, opt in enumerate(raw):
        if isinstance(opt, ChoiceOption):
            options.append(opt)
        elif isinstance(opt, Mapping):
            label = opt.get("label", opt.get("text", ""))
            options.append(ChoiceOption(id=str(opt.get("id", i)), label=str(label)))
        else:
            options.append(ChoiceOption(id=str(i), label=str(opt)))
    return tuple(options) or None


def missing_fields(item: PracticeStepItem, required: tuple[str, ...]) -> list[str]:
    """Required fields left empty on a built item."""
    return [name for name in required if not getattr(item, name)]
