"""
Learner state: onboarding preferences, BKT skill mastery and progress recording.

Components:
- LearnerProfile: preferences, method scores and initial BKT parameters
- MasteryTracker: per-skill Bayesian Knowledge Tracing
- ProgressRecorder: attempt/completion side effects and plan invalidation
"""
from delivery_engine.learning.mastery_tracker import MasteryTracker, bkt_update
from delivery_engine.learning.preferences import LearnerProfile
from delivery_engine.learning.progress import AttemptOutcome, ProgressRecorder

__all__ = [
    "LearnerProfile",
    "MasteryTracker",
    "bkt_update",
    "ProgressRecorder",
    "AttemptOutcome",
]
