"""
Domain models for the content-delivery engine.

Three groups live here:
- Records read from the persistence collaborator (teachings, questions,
  performance rows, skill mastery)
- Candidates: the ephemeral, per-request view of an item that may be delivered
- Session plans: the immutable output of plan composition
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Union

from pydantic import BaseModel, ConfigDict, Field


class DeliveryMethod(str, Enum):
    """Interaction form used to present a question."""

    FLASHCARD = "flashcard"
    MULTIPLE_CHOICE = "multiple_choice"
    FILL_BLANK = "fill_blank"
    TEXT_TRANSLATION = "text_translation"
    SPEECH_TO_TEXT = "speech_to_text"
    TEXT_TO_SPEECH = "text_to_speech"


# Methods that count towards listening/speaking modality coverage
LISTENING_SPEAKING_METHODS: frozenset[DeliveryMethod] = frozenset(
    {DeliveryMethod.SPEECH_TO_TEXT, DeliveryMethod.TEXT_TO_SPEECH}
)


class CandidateKind(str, Enum):
    TEACHING = "teaching"
    QUESTION = "question"


class SessionMode(str, Enum):
    LEARN = "learn"
    REVIEW = "review"
    MIXED = "mixed"


class StepType(str, Enum):
    TEACH = "teach"
    PRACTICE = "practice"
    RECAP = "recap"


# =============================================================================
# PERSISTED RECORDS (read-only for the engine)
# =============================================================================


@dataclass(frozen=True)
class BktParameters:
    """Bayesian Knowledge Tracing parameters for one skill."""

    prior: float = 0.3  # P(L0)
    learn: float = 0.2  # P(T)
    guess: float = 0.2  # P(G)
    slip: float = 0.1  # P(S)


DEFAULT_BKT_PARAMETERS = BktParameters()


@dataclass
class SkillMastery:
    """Mastery state per learner per skill tag."""

    skill_tag: str
    mastery_probability: float
    prior: float
    learn: float
    guess: float
    slip: float
    last_updated: datetime | None = None

    @property
    def parameters(self) -> BktParameters:
        return BktParameters(prior=self.prior, learn=self.learn, guess=self.guess, slip=self.slip)


@dataclass(frozen=True)
class PerformanceRecord:
    """One row of the append-only attempt log owned by the SRS collaborator."""

    question_id: str
    score: float  # 0-100
    created_at: datetime
    next_review_due: datetime | None = None
    time_to_complete_ms: int | None = None
    delivery_method: DeliveryMethod | None = None
    interval_days: float | None = None
    stability: float | None = None
    difficulty: float | None = None
    repetitions: int | None = None


@dataclass(frozen=True)
class TeachingRecord:
    """A teaching card (phrase + translation) with its lesson context."""

    id: str
    lesson_id: str
    phrase: str  # learning-language string
    translation: str  # user-language string
    knowledge_level: str | None = None
    tip: str | None = None
    emoji: str | None = None
    module_id: str | None = None
    skill_tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class QuestionRecord:
    """A practice question with its parent teaching and available variants."""

    id: str
    teaching: TeachingRecord
    delivery_methods: tuple[DeliveryMethod, ...] = ()
    skill_tags: tuple[str, ...] = ()

    @property
    def teaching_id(self) -> str:
        return self.teaching.id

    @property
    def lesson_id(self) -> str:
        return self.teaching.lesson_id


@dataclass(frozen=True)
class LearnerPreferences:
    """Onboarding-derived preferences supplied by the preference collaborator."""

    challenge_weight: float = 0.5
    session_minutes: int | None = None
    learning_styles: tuple[str, ...] = ()
    experience: str | None = None


@dataclass(frozen=True)
class AttemptResult:
    """Outcome of one answered question, as handed to the SRS collaborator."""

    correct: bool
    time_ms: int
    score: float
    delivery_method: DeliveryMethod | None = None


@dataclass(frozen=True)
class SrsState:
    """Opaque SRS output. The engine only reads next_review_due."""

    next_review_due: datetime
    interval_days: float
    stability: float | None = None
    difficulty: float | None = None
    repetitions: int = 0


# =============================================================================
# CANDIDATES
# =============================================================================


@dataclass(frozen=True)
class Candidate:
    """
    One teaching or question available for delivery.

    Closed variant: use TeachingCandidate or QuestionCandidate.
    due_score > 0 marks a review item, due_score == 0 a new/unseen one.
    """

    kind: ClassVar[CandidateKind]

    id: str
    teaching_id: str | None = None
    lesson_id: str | None = None
    due_score: float = 0.0
    error_score: int = 0
    time_since_last_seen: float = math.inf  # ms
    skill_tags: tuple[str, ...] = ()
    exercise_type: str = "practice"
    difficulty: float = 0.5
    estimated_mastery: float = 0.0
    delivery_methods: tuple[DeliveryMethod, ...] = ()

    @property
    def is_review(self) -> bool:
        return self.due_score > 0


@dataclass(frozen=True)
class TeachingCandidate(Candidate):
    kind: ClassVar[CandidateKind] = CandidateKind.TEACHING

    title: str | None = None
    prompt: str | None = None


@dataclass(frozen=True)
class QuestionCandidate(Candidate):
    kind: ClassVar[CandidateKind] = CandidateKind.QUESTION


# =============================================================================
# SESSION PLAN
# =============================================================================


@dataclass(frozen=True)
class ChoiceOption:
    id: str
    label: str


@dataclass(frozen=True)
class TeachStepItem:
    """Introduces a new phrase."""

    type: ClassVar[StepType] = StepType.TEACH

    teaching_id: str
    lesson_id: str
    phrase: str
    translation: str
    emoji: str | None = None
    tip: str | None = None
    knowledge_level: str | None = None


@dataclass(frozen=True)
class PracticeStepItem:
    """A question rendered for one delivery method. Method-specific fields are optional."""

    type: ClassVar[StepType] = StepType.PRACTICE

    question_id: str
    teaching_id: str
    lesson_id: str
    delivery_method: DeliveryMethod | None  # None for a generic step
    prompt: str | None = None
    options: tuple[ChoiceOption, ...] | None = None  # multiple choice, tap-to-fill
    correct_option_id: str | None = None  # multiple choice
    source_text: str | None = None  # translation-style multiple choice
    text: str | None = None  # fill blank
    answer: str | None = None
    hint: str | None = None
    source: str | None = None  # translation, flashcard
    translation: str | None = None  # text-to-speech display


@dataclass(frozen=True)
class RecapSummary:
    total_items: int
    xp_earned: int
    correct_count: int = 0
    accuracy: float = 0.0
    time_spent_sec: int = 0


@dataclass(frozen=True)
class RecapStepItem:
    type: ClassVar[StepType] = StepType.RECAP

    summary: RecapSummary


StepItem = Union[TeachStepItem, PracticeStepItem, RecapStepItem]


@dataclass(frozen=True)
class SessionStep:
    step_number: int
    type: StepType
    item: StepItem
    estimated_time_sec: float
    delivery_method: DeliveryMethod | None = None
    rationale: str | None = None


@dataclass(frozen=True)
class SessionMetadata:
    total_estimated_time_sec: float
    total_steps: int
    teach_steps: int
    practice_steps: int
    recap_steps: int
    potential_xp: int
    due_reviews_included: int
    new_items_included: int
    topics_covered: tuple[str, ...] = ()
    delivery_methods_used: tuple[DeliveryMethod, ...] = ()


@dataclass(frozen=True)
class SessionPlan:
    """Ordered session steps plus metadata. Immutable once built."""

    id: str
    kind: SessionMode
    steps: tuple[SessionStep, ...]
    metadata: SessionMetadata
    created_at: datetime
    lesson_id: str | None = None
    title: str | None = None

    def steps_of_type(self, step_type: StepType) -> list[SessionStep]:
        return [s for s in self.steps if s.type == step_type]


class SessionContext(BaseModel):
    """Request context for createPlan."""

    model_config = ConfigDict(frozen=True)

    mode: SessionMode
    time_budget_sec: int | None = Field(default=None, gt=0)
    lesson_id: str | None = None
    module_id: str | None = None


@dataclass
class TimeAverages:
    """Learner's historical per-item durations, in seconds."""

    teach_sec: float
    practice_sec: float
    by_method: dict[DeliveryMethod, float] = field(default_factory=dict)

    @property
    def per_item_sec(self) -> float:
        return (self.teach_sec + self.practice_sec) / 2
