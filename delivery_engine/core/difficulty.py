"""
Difficulty Model.

Maps a CEFR knowledge level to a base difficulty, scales it down as the
learner's mastery grows, and buckets (difficulty, mastery) pairs into bands.
"""

from __future__ import annotations

from enum import Enum


class DifficultyBand(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


KNOWLEDGE_LEVEL_DIFFICULTY: dict[str, float] = {
    "A1": 0.1,
    "A2": 0.3,
    "B1": 0.5,
    "B2": 0.7,
    "C1": 0.85,
    "C2": 1.0,
}

DEFAULT_DIFFICULTY = 0.5
DEFAULT_MASTERY_CAP = 0.3


def base_difficulty(knowledge_level: str | None) -> float:
    """
    Base difficulty for a CEFR level.

    Unknown, empty or missing levels map to the midpoint (0.5).
    """
    if not knowledge_level:
        return DEFAULT_DIFFICULTY
    return KNOWLEDGE_LEVEL_DIFFICULTY.get(knowledge_level.strip().upper(), DEFAULT_DIFFICULTY)


def adjust_for_mastery(base: float, mastery: float, cap: float = DEFAULT_MASTERY_CAP) -> float:
    """
    Reduce difficulty as mastery grows.

    Args:
        base: Base difficulty (0-1)
        mastery: Estimated mastery (0-1)
        cap: Maximum share of difficulty removed at full mastery

    Returns:
        base * (1 - mastery * cap)
    """
    return base * (1 - mastery * cap)


def classify(difficulty: float, mastery: float) -> DifficultyBand:
    """Bucket an item for the learner. Easy is checked first, then hard."""
    if difficulty < 0.3 or mastery > 0.7:
        return DifficultyBand.EASY
    if difficulty > 0.7 or mastery < 0.3:
        return DifficultyBand.HARD
    return DifficultyBand.MEDIUM
