"""
Mastery Tracker using Bayesian Knowledge Tracing.

BKT models each skill as a two-state (known/unknown) hidden variable:
- prior  P(L0): initial probability the skill is known
- learn  P(T):  probability of learning it after a practice opportunity
- guess  P(G):  probability of a correct answer while not knowing it
- slip   P(S):  probability of a wrong answer while knowing it

Update after a correct answer:
    P(L|correct) = P(L)(1-S) / (P(L)(1-S) + (1-P(L))G)
    P(L|next)    = P(L|correct) + (1 - P(L|correct))T

Update after a wrong answer (no learning step):
    P(L|next) = P(L)S / (P(L)S + (1-P(L))(1-G))
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from loguru import logger

from delivery_engine.core.models import DEFAULT_BKT_PARAMETERS, BktParameters, SkillMastery
from delivery_engine.learning.preferences import LearnerProfile
from delivery_engine.ports import MasteryStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def bkt_update(p: float, params: BktParameters, correct: bool) -> float:
    """
    Posterior mastery after one observation, clamped to [0, 1].

    A zero denominator (degenerate parameters) leaves p unchanged.
    """
    if correct:
        numerator = p * (1 - params.slip)
        denominator = numerator + (1 - p) * params.guess
        if denominator == 0:
            return p
        p_given_obs = numerator / denominator
        updated = p_given_obs + (1 - p_given_obs) * params.learn
    else:
        numerator = p * params.slip
        denominator = numerator + (1 - p) * (1 - params.guess)
        if denominator == 0:
            return p
        updated = numerator / denominator

    return max(0.0, min(1.0, updated))


class MasteryTracker:
    """
    Per-learner, per-skill BKT state on top of a MasteryStore.

    Records are created lazily on the first scored attempt touching a skill,
    seeded from onboarding-derived parameters when a LearnerProfile is given.
    """

    def __init__(
        self,
        store: MasteryStore,
        profile: LearnerProfile | None = None,
        default_parameters: BktParameters = DEFAULT_BKT_PARAMETERS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.profile = profile
        self.default_parameters = default_parameters
        self.clock = clock

    async def _initial_parameters(self, learner_id: str) -> BktParameters:
        params = None
        if self.profile is not None:
            params = await self.profile.get_initial_bkt_parameters(learner_id)
        return params or self.default_parameters

    async def _initialize(self, learner_id: str, skill_tag: str) -> SkillMastery:
        params = await self._initial_parameters(learner_id)

        logger.debug(f"Initializing mastery for {learner_id}/{skill_tag} with prior={params.prior}")
        return SkillMastery(
            skill_tag=skill_tag,
            mastery_probability=params.prior,
            prior=params.prior,
            learn=params.learn,
            guess=params.guess,
            slip=params.slip,
            last_updated=self.clock(),
        )

    async def update_mastery(self, learner_id: str, skill_tag: str, correct: bool) -> float:
        """
        Apply one observation to a skill and persist it.

        Args:
            learner_id: Learner identifier
            skill_tag: Skill tag identifier
            correct: Whether the attempt was answered correctly

        Returns:
            Updated mastery probability
        """
        mastery = await self.store.get(learner_id, skill_tag)
        if mastery is None:
            mastery = await self._initialize(learner_id, skill_tag)

        old = mastery.mastery_probability
        mastery.mastery_probability = bkt_update(old, mastery.parameters, correct)
        mastery.last_updated = self.clock()
        await self.store.save(learner_id, mastery)

        logger.debug(
            f"Mastery {learner_id}/{skill_tag}: {old:.3f} -> {mastery.mastery_probability:.3f} "
            f"({'correct' if correct else 'incorrect'})"
        )
        return mastery.mastery_probability

    async def update_from_attempt(
        self, learner_id: str, skill_tags: Iterable[str], correct: bool
    ) -> dict[str, float]:
        """Update every skill touched by one attempt."""
        results: dict[str, float] = {}
        for tag in dict.fromkeys(skill_tags):
            results[tag] = await self.update_mastery(learner_id, tag, correct)
        return results

    async def get_mastery(self, learner_id: str, skill_tag: str) -> float:
        """Current mastery, or the prior a first attempt would be seeded with."""
        mastery = await self.store.get(learner_id, skill_tag)
        if mastery is None:
            return (await self._initial_parameters(learner_id)).prior
        return mastery.mastery_probability

    async def get_masteries(self, learner_id: str, skill_tags: Iterable[str]) -> dict[str, float]:
        return {tag: await self.get_mastery(learner_id, tag) for tag in dict.fromkeys(skill_tags)}

    async def get_low_mastery_skills(self, learner_id: str, threshold: float = 0.5) -> list[str]:
        """Skill tags with mastery strictly below the threshold."""
        records = await self.store.list_below(learner_id, threshold)
        return [r.skill_tag for r in records if r.mastery_probability < threshold]

    async def reset(self, learner_id: str) -> int:
        """Delete all mastery state for a learner (full progress reset)."""
        deleted = await self.store.delete_all(learner_id)
        logger.info(f"Reset mastery for {learner_id}: {deleted} skill records removed")
        return deleted
