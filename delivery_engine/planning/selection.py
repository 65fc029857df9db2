"""
Mode-specific candidate selection.

- review: ranked due reviews (batch size is settled by compose_review)
- learn:  ranked new items, topped up with ranked reviews to the target
- mixed:  floor(target * 0.7) ranked reviews, the rest ranked new items
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from delivery_engine.core.models import Candidate, SessionMode
from delivery_engine.planning.priority_ranker import rank_candidates

DEFAULT_MIXED_REVIEW_RATIO = 0.7


def select_for_mode(
    mode: SessionMode,
    review_candidates: Sequence[Candidate],
    new_candidates: Sequence[Candidate],
    target_count: int,
    prioritized_skills: Sequence[str] = (),
    challenge_weight: float = 0.5,
    mixed_review_ratio: float = DEFAULT_MIXED_REVIEW_RATIO,
) -> list[Candidate]:
    """
    Pick the candidates a session of the given mode will draw from.

    Prioritized (low-mastery) skills only boost new items; reviews already
    outrank everything by due-ness.
    """
    ranked_reviews = rank_candidates(review_candidates, (), challenge_weight)

    if mode == SessionMode.REVIEW:
        return ranked_reviews

    ranked_new = rank_candidates(new_candidates, prioritized_skills, challenge_weight)

    if mode == SessionMode.LEARN:
        if len(ranked_new) >= target_count:
            selected = ranked_new
        else:
            selected = ranked_new + ranked_reviews[: target_count - len(ranked_new)]
    else:
        review_count = math.floor(target_count * mixed_review_ratio)
        new_count = target_count - review_count
        selected = ranked_reviews[:review_count] + ranked_new[:new_count]

    return selected[:target_count]
