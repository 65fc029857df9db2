"""
Interleaving Orchestrator.

Sequences a candidate set so that exercise types and skills alternate, while
reacting to the learner's error history:

1. Scaffolding: a skill with an error counter >= 3 gets a high-mastery review
   item carrying that skill (a quick win before retrying the weak skill)
2. Error-streak recovery: after 2+ consecutive errors, an easy item
3. Modality coverage: one listening/speaking item early in the session
4. Variety: different type and fresh skills, relaxed step by step

Also provides the session compositions built on top of it: teach-then-test
pairing, merging reviews between teach/test units, and review batches.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from loguru import logger

from delivery_engine.core.difficulty import DifficultyBand, classify
from delivery_engine.core.models import (
    LISTENING_SPEAKING_METHODS,
    Candidate,
    CandidateKind,
)

DEFAULT_MAX_SAME_TYPE_IN_ROW = 2
RECENT_SKILL_TAG_WINDOW = 5
SCAFFOLDING_ERROR_THRESHOLD = 3
ERROR_STREAK_THRESHOLD = 2
HIGH_MASTERY_THRESHOLD = 0.7
DEFAULT_REVIEW_BATCH_FLOOR = 10


@dataclass
class InterleaveOptions:
    """Knobs for one orchestration run."""

    max_same_type_in_row: int = DEFAULT_MAX_SAME_TYPE_IN_ROW
    require_modality_coverage: bool = True
    enable_scaffolding: bool = True
    consecutive_errors: int = 0


@dataclass
class ClassifiedPools:
    """Candidate pools the targeted strategies draw from."""

    easy: list[Candidate] = field(default_factory=list)
    review_high_mastery: list[Candidate] = field(default_factory=list)

    @classmethod
    def from_candidates(cls, candidates: Iterable[Candidate]) -> ClassifiedPools:
        pools = cls()
        for candidate in candidates:
            if classify(candidate.difficulty, candidate.estimated_mastery) == DifficultyBand.EASY:
                pools.easy.append(candidate)
            if candidate.due_score > 0 and candidate.estimated_mastery > HIGH_MASTERY_THRESHOLD:
                pools.review_high_mastery.append(candidate)
        return pools


def build_skill_error_map(candidates: Iterable[Candidate]) -> dict[str, int]:
    """Per skill tag, the highest error_score of any candidate carrying it."""
    errors: dict[str, int] = {}
    for candidate in candidates:
        for tag in candidate.skill_tags:
            errors[tag] = max(errors.get(tag, 0), candidate.error_score)
    return errors


def offers_listening_speaking(candidate: Candidate) -> bool:
    return any(m in LISTENING_SPEAKING_METHODS for m in candidate.delivery_methods)


def violates_same_type(candidate: Candidate, recent_types: Sequence[str], max_same_type_in_row: int) -> bool:
    """True if the candidate's type already fills the recent window."""
    return recent_types.count(candidate.exercise_type) >= max_same_type_in_row


@dataclass
class _SelectionState:
    composed: list[Candidate] = field(default_factory=list)
    used: set[str] = field(default_factory=set)
    recent_types: list[str] = field(default_factory=list)
    recent_skill_tags: list[str] = field(default_factory=list)
    error_streak: int = 0
    needs_modality_coverage: bool = False


class InterleavingOrchestrator:
    """
    Stateful selection loop over one candidate set.

    The orchestrator itself holds only configuration; all run state lives in a
    fresh _SelectionState per compose() call.
    """

    def __init__(self, options: InterleaveOptions | None = None):
        self.options = options or InterleaveOptions()

    def compose(self, candidates: Sequence[Candidate]) -> list[Candidate]:
        """
        Order candidates under the type/skill/modality constraints.

        Duplicate ids are emitted at most once.
        """
        if not candidates:
            return []

        opts = self.options
        skill_errors = build_skill_error_map(candidates)
        pools = ClassifiedPools.from_candidates(candidates)
        state = _SelectionState(
            error_streak=opts.consecutive_errors,
            needs_modality_coverage=opts.require_modality_coverage,
        )
        remaining = list(candidates)

        while remaining or state.needs_modality_coverage:
            selected = self._select_next(remaining, pools, skill_errors, state)
            if selected is None:
                break

            self._record(selected, state)
            remaining = [c for c in remaining if c.id != selected.id]

            if state.needs_modality_coverage and offers_listening_speaking(selected):
                state.needs_modality_coverage = False

        logger.debug(
            f"Interleaved {len(state.composed)} of {len(candidates)} candidates "
            f"(types: {[c.exercise_type for c in state.composed]})"
        )
        return state.composed

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _select_next(
        self,
        remaining: list[Candidate],
        pools: ClassifiedPools,
        skill_errors: dict[str, int],
        state: _SelectionState,
    ) -> Candidate | None:
        opts = self.options

        if opts.enable_scaffolding:
            selected = self._select_for_scaffolding(pools, skill_errors, state)
            if selected is not None:
                return selected

        if opts.enable_scaffolding and state.error_streak >= ERROR_STREAK_THRESHOLD:
            selected = self._find(pools.easy, state)
            if selected is not None:
                state.error_streak = 0
                return selected

        if state.needs_modality_coverage:
            selected = next(
                (c for c in remaining if c.id not in state.used and offers_listening_speaking(c)),
                None,
            )
            if selected is not None:
                state.needs_modality_coverage = False
                return selected

        return self._select_for_variety(remaining, state)

    def _select_for_scaffolding(
        self,
        pools: ClassifiedPools,
        skill_errors: dict[str, int],
        state: _SelectionState,
    ) -> Candidate | None:
        needing = [tag for tag, count in skill_errors.items() if count >= SCAFFOLDING_ERROR_THRESHOLD]
        if not needing:
            return None

        target = needing[0]
        selected = next(
            (
                c
                for c in pools.review_high_mastery
                if c.id not in state.used
                and target in c.skill_tags
                and not self._violates(c, state)
            ),
            None,
        )
        if selected is not None:
            logger.debug(f"Scaffolding {target} with {selected.id}")
            skill_errors[target] = 0
        return selected

    def _select_for_variety(self, remaining: list[Candidate], state: _SelectionState) -> Candidate | None:
        last_type = state.recent_types[-1] if state.recent_types else None

        if state.recent_skill_tags:
            selected = self._find(
                remaining, state, avoid_type=last_type, avoid_skill_tags=state.recent_skill_tags
            )
            if selected is not None:
                return selected

        if last_type is not None:
            selected = self._find(remaining, state, avoid_type=last_type)
            if selected is not None:
                return selected

        return self._find(remaining, state)

    # ------------------------------------------------------------------
    # Search helpers
    # ------------------------------------------------------------------

    def _violates(self, candidate: Candidate, state: _SelectionState) -> bool:
        return violates_same_type(candidate, state.recent_types, self.options.max_same_type_in_row)

    def _find(
        self,
        pool: Sequence[Candidate],
        state: _SelectionState,
        avoid_type: str | None = None,
        avoid_skill_tags: Sequence[str] = (),
    ) -> Candidate | None:
        """
        First unused candidate in the pool, trying narrower filters first.

        Order: avoid type and tags, avoid type, any constraint-respecting,
        then any unused (constraints ignored).
        """
        unused = [c for c in pool if c.id not in state.used]
        valid = [c for c in unused if not self._violates(c, state)]

        if avoid_skill_tags:
            avoided = set(avoid_skill_tags)
            for c in valid:
                if avoid_type and c.exercise_type == avoid_type:
                    continue
                if not any(tag in avoided for tag in c.skill_tags):
                    return c

        if avoid_type:
            for c in valid:
                if c.exercise_type != avoid_type:
                    return c

        if valid:
            return valid[0]
        return unused[0] if unused else None

    def _record(self, selected: Candidate, state: _SelectionState) -> None:
        state.composed.append(selected)
        state.used.add(selected.id)

        if selected.skill_tags:
            # Deduplicate keeping the most recent occurrence, then keep the last 5
            tags = state.recent_skill_tags + list(selected.skill_tags)
            deduped = list(reversed(dict.fromkeys(reversed(tags))))
            state.recent_skill_tags = deduped[-RECENT_SKILL_TAG_WINDOW:]

        state.recent_types.append(selected.exercise_type or "unknown")
        while len(state.recent_types) > self.options.max_same_type_in_row:
            state.recent_types.pop(0)


# =============================================================================
# Session compositions
# =============================================================================


def plan_teach_then_test(
    teachings: Iterable[Candidate],
    questions: Iterable[Candidate],
    seen_teaching_ids: set[str],
) -> list[Candidate]:
    """
    Emit each unseen teaching immediately before its first question.

    Each teaching appears at most once; questions without an unseen teaching
    stand alone.
    """
    by_teaching_id = {t.teaching_id: t for t in teachings if t.teaching_id}
    emitted: set[str] = set()
    sequence: list[Candidate] = []

    for question in questions:
        teaching = by_teaching_id.get(question.teaching_id) if question.teaching_id else None
        if teaching is not None and question.teaching_id not in seen_teaching_ids and teaching.id not in emitted:
            sequence.append(teaching)
            emitted.add(teaching.id)
        sequence.append(question)

    return sequence


def group_teach_test_units(sequence: Sequence[Candidate]) -> list[list[Candidate]]:
    """Split a teach-then-test sequence into [teaching, question] pairs and singletons."""
    units: list[list[Candidate]] = []
    i = 0
    while i < len(sequence):
        item = sequence[i]
        nxt = sequence[i + 1] if i + 1 < len(sequence) else None
        if (
            item.kind == CandidateKind.TEACHING
            and nxt is not None
            and nxt.kind == CandidateKind.QUESTION
            and nxt.teaching_id == item.teaching_id
        ):
            units.append([item, nxt])
            i += 2
            continue
        units.append([item])
        i += 1
    return units


def merge_with_reviews(reviews: Sequence[Candidate], teach_test_sequence: Sequence[Candidate]) -> list[Candidate]:
    """Alternate one teach/test unit with one review until both run out. Pairs stay intact."""
    units = group_teach_test_units(teach_test_sequence)
    merged: list[Candidate] = []
    for i in range(max(len(units), len(reviews))):
        if i < len(units):
            merged.extend(units[i])
        if i < len(reviews):
            merged.append(reviews[i])
    return merged


def compose_learn(
    new_questions: Sequence[Candidate],
    teachings: Sequence[Candidate],
    reviews: Sequence[Candidate],
    seen_teaching_ids: set[str],
    max_same_type_in_row: int = DEFAULT_MAX_SAME_TYPE_IN_ROW,
) -> list[Candidate]:
    """
    Learn/mixed composition: teach-then-test for new content, reviews lightly
    interleaved (no modality coverage, no scaffolding) and slotted between units.
    """
    question_teaching_ids = {q.teaching_id for q in new_questions if q.teaching_id}
    relevant = [t for t in teachings if t.teaching_id in question_teaching_ids]
    sequence = plan_teach_then_test(relevant, new_questions, seen_teaching_ids)

    if not reviews:
        return sequence

    orchestrator = InterleavingOrchestrator(
        InterleaveOptions(
            max_same_type_in_row=max_same_type_in_row,
            require_modality_coverage=False,
            enable_scaffolding=False,
            consecutive_errors=0,
        )
    )
    return merge_with_reviews(orchestrator.compose(reviews), sequence)


def compose_review(
    candidates: Sequence[Candidate],
    target_count: int | None = None,
    max_same_type_in_row: int = DEFAULT_MAX_SAME_TYPE_IN_ROW,
    batch_floor: int = DEFAULT_REVIEW_BATCH_FLOOR,
) -> list[Candidate]:
    """
    Review-mode composition over deduplicated due candidates.

    With a target count, the batch is truncated to it, but never below
    min(batch_floor, selected) once more than one item is selected.
    """
    by_id: dict[str, Candidate] = {}
    for candidate in candidates:
        by_id.setdefault(candidate.id, candidate)
    unique = list(by_id.values())
    if len(unique) < len(candidates):
        logger.debug(f"Dropped {len(candidates) - len(unique)} duplicate review candidates")

    orchestrator = InterleavingOrchestrator(
        InterleaveOptions(
            max_same_type_in_row=max_same_type_in_row,
            require_modality_coverage=True,
            enable_scaffolding=True,
            consecutive_errors=0,
        )
    )
    composed = orchestrator.compose(unique)

    if target_count is None:
        return composed

    limit = target_count
    if len(composed) > 1:
        limit = max(target_count, min(batch_floor, len(composed)))
    return composed[:limit]
