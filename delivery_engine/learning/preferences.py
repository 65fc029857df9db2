"""
Onboarding-derived learner defaults.

Turns the answers collected at onboarding (learning styles, experience,
session length) into the numbers the engine needs before a learner has any
history: starting delivery-method scores, starting BKT parameters and a
default session time budget.
"""

from __future__ import annotations

from loguru import logger

from delivery_engine.core.errors import SchemaMismatchError
from delivery_engine.core.models import BktParameters, DeliveryMethod, LearnerPreferences
from delivery_engine.ports import ContentRepository, PreferenceProvider

NEUTRAL_METHOD_SCORE = 0.5
PREFERRED_METHOD_FLOOR = 0.65
NON_PREFERRED_METHOD_CAP = 0.45
EXPERIENCE_ADJUSTMENT = 0.1

LEARNING_STYLE_METHODS: dict[str, tuple[DeliveryMethod, ...]] = {
    "visual": (DeliveryMethod.FLASHCARD, DeliveryMethod.MULTIPLE_CHOICE),
    "auditory": (DeliveryMethod.TEXT_TO_SPEECH, DeliveryMethod.SPEECH_TO_TEXT),
    "kinesthetic": (DeliveryMethod.FILL_BLANK, DeliveryMethod.TEXT_TRANSLATION),
    "reading": (DeliveryMethod.TEXT_TRANSLATION, DeliveryMethod.FILL_BLANK),
    "writing": (DeliveryMethod.FILL_BLANK, DeliveryMethod.TEXT_TRANSLATION),
}

BEGINNER_BKT = BktParameters(prior=0.4, learn=0.15, guess=0.2, slip=0.1)
ADVANCED_BKT = BktParameters(prior=0.2, learn=0.25, guess=0.2, slip=0.1)


def _experience_bucket(experience: str | None) -> str | None:
    if not experience:
        return None
    text = experience.lower()
    if "beginner" in text or "new" in text:
        return "beginner"
    if "advanced" in text or "expert" in text:
        return "advanced"
    return None


def initial_delivery_method_scores(
    learning_styles: tuple[str, ...] | list[str] = (),
    experience: str | None = None,
) -> dict[DeliveryMethod, float]:
    """
    Starting per-method scores from onboarding answers.

    Styles are applied in order: each known style lifts its methods to at
    least 0.65 and caps every other method at 0.45. Experience then shifts
    all scores by 0.1 (down for beginners, up for advanced), clamped to
    [0.1, 1.0].
    """
    scores = {method: NEUTRAL_METHOD_SCORE for method in DeliveryMethod}

    for style in learning_styles:
        preferred = LEARNING_STYLE_METHODS.get(style.lower(), ())
        if not preferred:
            continue
        for method in preferred:
            scores[method] = max(scores[method], PREFERRED_METHOD_FLOOR)
        for method in DeliveryMethod:
            if method not in preferred:
                scores[method] = min(scores[method], NON_PREFERRED_METHOD_CAP)

    bucket = _experience_bucket(experience)
    if bucket is not None:
        adjustment = -EXPERIENCE_ADJUSTMENT if bucket == "beginner" else EXPERIENCE_ADJUSTMENT
        for method in DeliveryMethod:
            scores[method] = max(0.1, min(1.0, scores[method] + adjustment))

    return scores


def initial_bkt_parameters(experience: str | None) -> BktParameters | None:
    """BKT parameters for a learner's experience level, or None to use the defaults."""
    bucket = _experience_bucket(experience)
    if bucket == "beginner":
        return BEGINNER_BKT
    if bucket == "advanced":
        return ADVANCED_BKT
    return None


class LearnerProfile:
    """
    Resolves learner preferences with stored data taking precedence.

    Args:
        preferences: Onboarding preference collaborator
        repository: Content repository (for stored delivery-method scores)
    """

    def __init__(self, preferences: PreferenceProvider, repository: ContentRepository):
        self.preferences = preferences
        self.repository = repository

    async def get_preferences(self, learner_id: str) -> LearnerPreferences:
        prefs = await self.preferences.get_preferences(learner_id)
        if prefs is None:
            logger.debug(f"No onboarding preferences for {learner_id}, using defaults")
            return LearnerPreferences()
        return prefs

    async def get_delivery_method_scores(self, learner_id: str) -> dict[DeliveryMethod, float]:
        """Stored scores if the learner has any, else onboarding-derived ones."""
        try:
            stored = await self.repository.get_delivery_method_scores(learner_id)
        except SchemaMismatchError as exc:
            logger.warning(f"Delivery method scores unavailable for {learner_id}: {exc}")
            stored = {}
        if stored:
            return dict(stored)

        prefs = await self.get_preferences(learner_id)
        return initial_delivery_method_scores(prefs.learning_styles, prefs.experience)

    async def get_initial_bkt_parameters(self, learner_id: str) -> BktParameters | None:
        prefs = await self.get_preferences(learner_id)
        return initial_bkt_parameters(prefs.experience)

    @staticmethod
    def session_budget_sec(prefs: LearnerPreferences) -> int | None:
        """Default time budget from onboarding session length."""
        if prefs.session_minutes:
            return prefs.session_minutes * 60
        return None
