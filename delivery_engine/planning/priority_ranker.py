"""
Priority Ranker.

Pure scoring over candidates. Due reviews score from a base of 1000, but a
stale non-due item can exceed that through time_since_last_seen alone, so
rank_candidates orders by due-ness first and score second. Among non-due
items, error history, staleness, weak-skill overlap and a challenge-preference
band decide the order.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TypeVar

from delivery_engine.core.models import Candidate

DUE_REVIEW_BASE_PRIORITY = 1000
DUE_ERROR_MULTIPLIER = 10
NEW_ERROR_MULTIPLIER = 5
TIME_DIVISOR = 1000  # ms -> s
PRIORITIZED_SKILL_BONUS = 500
DIFFICULTY_MATCH_BONUS = 100

LOW_CHALLENGE_THRESHOLD = 0.4
HIGH_CHALLENGE_THRESHOLD = 0.7
LOW_DIFFICULTY_THRESHOLD = 0.4
HIGH_DIFFICULTY_THRESHOLD = 0.6

C = TypeVar("C", bound=Candidate)


def priority_score(
    candidate: Candidate,
    prioritized_skills: Iterable[str] = (),
    challenge_weight: float = 0.5,
) -> float:
    """
    Score one candidate; higher is more urgent.

    Never-seen candidates carry time_since_last_seen = inf and so score inf.
    """
    if candidate.due_score > 0:
        return (
            DUE_REVIEW_BASE_PRIORITY
            + candidate.due_score
            + candidate.error_score * DUE_ERROR_MULTIPLIER
        )

    score = candidate.error_score * NEW_ERROR_MULTIPLIER + candidate.time_since_last_seen / TIME_DIVISOR

    prioritized = set(prioritized_skills)
    if prioritized and any(tag in prioritized for tag in candidate.skill_tags):
        score += PRIORITIZED_SKILL_BONUS

    if challenge_weight < LOW_CHALLENGE_THRESHOLD:
        if candidate.difficulty < LOW_DIFFICULTY_THRESHOLD:
            score += DIFFICULTY_MATCH_BONUS
    elif challenge_weight > HIGH_CHALLENGE_THRESHOLD:
        if candidate.difficulty > HIGH_DIFFICULTY_THRESHOLD:
            score += DIFFICULTY_MATCH_BONUS

    return score


def rank_candidates(
    candidates: Sequence[C],
    prioritized_skills: Iterable[str] = (),
    challenge_weight: float = 0.5,
) -> list[C]:
    """Due reviews first, then descending priority. Ties keep input order."""
    skills = tuple(prioritized_skills)
    return sorted(
        candidates,
        key=lambda c: (c.due_score > 0, priority_score(c, skills, challenge_weight)),
        reverse=True,
    )
