"""
Modality Selector.

Picks a delivery method per practice item, biased toward the methods the
learner performs best with while leaving room for exploration.
"""

from __future__ import annotations

import random
from collections.abc import Mapping, Sequence

from delivery_engine.core.models import DeliveryMethod

DEFAULT_METHOD_SCORE = 0.5
MIN_METHOD_SCORE = 0.1
WEIGHT_EXPONENT = 4
DEFAULT_WEIGHTED_SELECTION_PROBABILITY = 0.85


def method_weights(
    methods: Sequence[DeliveryMethod],
    scores: Mapping[DeliveryMethod, float],
) -> list[float]:
    """max(0.1, score)^4 per method; unknown methods score 0.5."""
    return [
        max(MIN_METHOD_SCORE, scores.get(m, DEFAULT_METHOD_SCORE)) ** WEIGHT_EXPONENT
        for m in methods
    ]


def select_modality(
    methods: Sequence[DeliveryMethod],
    scores: Mapping[DeliveryMethod, float] | None = None,
    rng: random.Random | None = None,
    weighted_probability: float = DEFAULT_WEIGHTED_SELECTION_PROBABILITY,
) -> DeliveryMethod | None:
    """
    Choose a delivery method.

    Args:
        methods: Methods the question offers
        scores: Learner's per-method performance scores (0-1)
        rng: Random source; pass a seeded Random for reproducible plans
        weighted_probability: Share of draws taken from the weighted distribution

    Returns:
        None for no methods, the only method when there is one (no randomness
        consumed), otherwise a weighted draw or, with probability
        1 - weighted_probability, a uniform one.
    """
    if not methods:
        return None
    if len(methods) == 1:
        return methods[0]

    rng = rng or random.Random()
    if rng.random() < weighted_probability:
        return rng.choices(list(methods), weights=method_weights(methods, scores or {}), k=1)[0]
    return rng.choice(list(methods))
