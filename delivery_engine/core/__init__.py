"""
Core domain: models, error taxonomy and difficulty mapping.
"""
from delivery_engine.core.difficulty import DifficultyBand, adjust_for_mastery, base_difficulty, classify
from delivery_engine.core.errors import (
    DeliveryEngineError,
    DuplicateStrategyError,
    SchemaMismatchError,
    UnknownDeliveryMethodError,
    UnknownQuestionError,
    UpstreamError,
)
from delivery_engine.core.models import (
    AttemptResult,
    BktParameters,
    Candidate,
    CandidateKind,
    DeliveryMethod,
    LearnerPreferences,
    PerformanceRecord,
    PracticeStepItem,
    QuestionCandidate,
    QuestionRecord,
    RecapStepItem,
    SessionContext,
    SessionMetadata,
    SessionMode,
    SessionPlan,
    SessionStep,
    SkillMastery,
    SrsState,
    StepType,
    TeachingCandidate,
    TeachingRecord,
    TeachStepItem,
    TimeAverages,
)

__all__ = [
    # Errors
    "DeliveryEngineError",
    "SchemaMismatchError",
    "UpstreamError",
    "UnknownDeliveryMethodError",
    "DuplicateStrategyError",
    "UnknownQuestionError",
    # Difficulty
    "DifficultyBand",
    "base_difficulty",
    "adjust_for_mastery",
    "classify",
    # Records
    "BktParameters",
    "SkillMastery",
    "PerformanceRecord",
    "TeachingRecord",
    "QuestionRecord",
    "LearnerPreferences",
    "AttemptResult",
    "SrsState",
    # Candidates
    "Candidate",
    "CandidateKind",
    "TeachingCandidate",
    "QuestionCandidate",
    # Plans
    "DeliveryMethod",
    "SessionMode",
    "StepType",
    "SessionContext",
    "SessionPlan",
    "SessionStep",
    "SessionMetadata",
    "TeachStepItem",
    "PracticeStepItem",
    "RecapStepItem",
    "TimeAverages",
]
