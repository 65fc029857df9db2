"""
Contracts for the engine's external collaborators.

The engine never talks to a database, an SRS scheduler or an onboarding
service directly; it is handed objects satisfying these Protocols. The SQL
reference adapter lives in delivery_engine.db.repository, in-memory fakes in
the test suite.

Any method may raise SchemaMismatchError when the store is missing a column or
table. Engine components degrade on that type and let everything else
propagate.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from delivery_engine.core.models import (
    AttemptResult,
    DeliveryMethod,
    LearnerPreferences,
    PerformanceRecord,
    QuestionRecord,
    SkillMastery,
    SrsState,
    TeachingRecord,
)


@runtime_checkable
class ContentRepository(Protocol):
    """Persistence/query layer for content and attempt history."""

    async def get_question_ids_in_scope(
        self, lesson_id: str | None = None, module_id: str | None = None
    ) -> list[str]:
        """Question ids in the lesson/module scope (all questions when unscoped)."""
        ...

    async def get_performances(
        self, learner_id: str, question_ids: Iterable[str] | None = None
    ) -> list[PerformanceRecord]:
        """Performance rows for the questions (all when None), newest first."""
        ...

    async def get_recent_attempts(
        self, learner_id: str, question_id: str, limit: int = 5
    ) -> list[PerformanceRecord]:
        """The most recent attempts for one question, newest first."""
        ...

    async def get_questions(self, question_ids: Iterable[str]) -> list[QuestionRecord]:
        ...

    async def get_teachings(self, teaching_ids: Iterable[str]) -> list[TeachingRecord]:
        ...

    async def get_attempted_question_ids(self, learner_id: str) -> set[str]:
        ...

    async def get_seen_teaching_ids(self, learner_id: str) -> set[str]:
        ...

    async def get_recent_durations(
        self, learner_id: str, limit: int = 100
    ) -> list[PerformanceRecord]:
        """Latest attempts carrying time_to_complete_ms and delivery_method."""
        ...

    async def get_delivery_method_scores(self, learner_id: str) -> dict[DeliveryMethod, float]:
        ...

    async def get_variant_data(
        self, question_id: str, method: DeliveryMethod
    ) -> Mapping[str, Any] | None:
        """Method-specific payload for a question (options, answer, hint...)."""
        ...

    async def append_performance(self, learner_id: str, record: PerformanceRecord) -> None:
        ...

    async def mark_teachings_completed(
        self, learner_id: str, teaching_ids: Iterable[str], completed_at: datetime
    ) -> None:
        ...


@runtime_checkable
class MasteryStore(Protocol):
    """Storage for per-learner BKT state."""

    async def get(self, learner_id: str, skill_tag: str) -> SkillMastery | None:
        ...

    async def save(self, learner_id: str, mastery: SkillMastery) -> None:
        ...

    async def list_below(self, learner_id: str, threshold: float) -> list[SkillMastery]:
        ...

    async def delete_all(self, learner_id: str) -> int:
        ...


@runtime_checkable
class PreferenceProvider(Protocol):
    """Onboarding-derived learner preferences."""

    async def get_preferences(self, learner_id: str) -> LearnerPreferences | None:
        ...


@runtime_checkable
class SrsScheduler(Protocol):
    """Spaced-repetition collaborator. Its interval formula is opaque to the engine."""

    async def schedule(
        self, learner_id: str, question_id: str, result: AttemptResult
    ) -> SrsState:
        ...
