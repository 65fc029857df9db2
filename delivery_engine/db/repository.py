"""
SQL reference adapter for the engine's collaborator Protocols.

- SqlContentRepository: ContentRepository over the content and attempt tables
- SqlMasteryStore: MasteryStore over skill_mastery
- SqlPreferenceProvider: PreferenceProvider over onboarding_answers

SQLAlchemy sessions are synchronous; every public coroutine runs its query
in a worker thread via asyncio.to_thread. Driver errors are translated at
this boundary: a missing column/table becomes SchemaMismatchError, anything
else UpstreamError, both chained to the original exception.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy import Engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from delivery_engine.core.errors import DeliveryEngineError, SchemaMismatchError, UpstreamError
from delivery_engine.core.models import (
    DeliveryMethod,
    LearnerPreferences,
    PerformanceRecord,
    QuestionRecord,
    SkillMastery,
    TeachingRecord,
)
from delivery_engine.db.database import make_session_factory, session_scope
from delivery_engine.db.models import (
    DeliveryMethodScore,
    Lesson,
    OnboardingAnswer,
    Question,
    QuestionPerformance,
    QuestionVariant,
    SkillMasteryRow,
    Teaching,
    TeachingCompletion,
)

T = TypeVar("T")

# PostgreSQL undefined_column / undefined_table
SCHEMA_MISMATCH_PGCODES = frozenset({"42703", "42P01"})
_SCHEMA_MISMATCH_MARKERS = ("no such column", "no such table")


def translate_db_error(exc: SQLAlchemyError, operation: str) -> DeliveryEngineError:
    """Map a SQLAlchemy/driver error onto the engine's error taxonomy."""
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None)
    message = str(orig if orig is not None else exc)

    if pgcode in SCHEMA_MISMATCH_PGCODES or any(m in message.lower() for m in _SCHEMA_MISMATCH_MARKERS):
        return SchemaMismatchError(message, operation=operation)
    return UpstreamError(message, operation=operation)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; stored values are UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _method(value: str | None) -> DeliveryMethod | None:
    if value is None:
        return None
    try:
        return DeliveryMethod(value)
    except ValueError:
        logger.warning(f"Ignoring unknown delivery method in store: {value!r}")
        return None


def _unique_tags(tags: Iterable[str] | None) -> tuple[str, ...]:
    return tuple(dict.fromkeys(tags or ()))


def _performance_record(row: QuestionPerformance) -> PerformanceRecord:
    return PerformanceRecord(
        question_id=row.question_id,
        score=row.score,
        created_at=_aware(row.created_at),
        next_review_due=_aware(row.next_review_due),
        time_to_complete_ms=row.time_to_complete_ms,
        delivery_method=_method(row.delivery_method),
        interval_days=row.interval_days,
        stability=row.stability,
        difficulty=row.difficulty,
        repetitions=row.repetitions,
    )


def _teaching_record(row: Teaching) -> TeachingRecord:
    return TeachingRecord(
        id=row.id,
        lesson_id=row.lesson_id,
        phrase=row.phrase,
        translation=row.translation,
        knowledge_level=row.knowledge_level,
        tip=row.tip,
        emoji=row.emoji,
        module_id=row.lesson.module_id if row.lesson is not None else None,
        skill_tags=_unique_tags(row.skill_tags),
    )


def _question_record(row: Question) -> QuestionRecord:
    methods = (_method(v.delivery_method) for v in row.variants)
    return QuestionRecord(
        id=row.id,
        teaching=_teaching_record(row.teaching),
        delivery_methods=tuple(dict.fromkeys(m for m in methods if m is not None)),
        skill_tags=_unique_tags(row.skill_tags),
    )


def _skill_mastery(row: SkillMasteryRow) -> SkillMastery:
    return SkillMastery(
        skill_tag=row.skill_tag,
        mastery_probability=row.mastery_probability,
        prior=row.prior,
        learn=row.learn,
        guess=row.guess,
        slip=row.slip,
        last_updated=_aware(row.last_updated),
    )


class _SqlAdapter:
    """Runs synchronous session work off the event loop with error translation."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self.session_factory = session_factory

    @classmethod
    def from_engine(cls, engine: Engine):
        return cls(make_session_factory(engine))

    def _call(self, operation: str, work: Callable[..., T], *args: Any) -> T:
        try:
            with session_scope(self.session_factory) as session:
                return work(session, *args)
        except SQLAlchemyError as exc:
            error = translate_db_error(exc, operation)
            logger.debug(f"{operation} failed: {type(error).__name__}: {error}")
            raise error from exc

    async def _run(self, operation: str, work: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._call, operation, work, *args)


class SqlContentRepository(_SqlAdapter):
    """ContentRepository backed by SQLAlchemy."""

    # ------------------------------------------------------------------
    # Scope and history
    # ------------------------------------------------------------------

    async def get_question_ids_in_scope(
        self, lesson_id: str | None = None, module_id: str | None = None
    ) -> list[str]:
        return await self._run("get_question_ids_in_scope", self._question_ids_in_scope, lesson_id, module_id)

    @staticmethod
    def _question_ids_in_scope(session: Session, lesson_id: str | None, module_id: str | None) -> list[str]:
        stmt = select(Question.id).join(Teaching, Question.teaching_id == Teaching.id)
        if lesson_id:
            stmt = stmt.where(Teaching.lesson_id == lesson_id)
        elif module_id:
            stmt = stmt.join(Lesson, Teaching.lesson_id == Lesson.id).where(Lesson.module_id == module_id)
        return list(session.scalars(stmt.order_by(Teaching.lesson_id, Question.id)))

    async def get_performances(
        self, learner_id: str, question_ids: Iterable[str] | None = None
    ) -> list[PerformanceRecord]:
        ids = None if question_ids is None else list(question_ids)
        if ids is not None and not ids:
            return []
        return await self._run("get_performances", self._performances, learner_id, ids)

    @staticmethod
    def _performances(session: Session, learner_id: str, ids: list[str] | None) -> list[PerformanceRecord]:
        stmt = select(QuestionPerformance).where(QuestionPerformance.learner_id == learner_id)
        if ids is not None:
            stmt = stmt.where(QuestionPerformance.question_id.in_(ids))
        stmt = stmt.order_by(QuestionPerformance.created_at.desc(), QuestionPerformance.id.desc())
        return [_performance_record(row) for row in session.scalars(stmt)]

    async def get_recent_attempts(
        self, learner_id: str, question_id: str, limit: int = 5
    ) -> list[PerformanceRecord]:
        return await self._run("get_recent_attempts", self._recent_attempts, learner_id, question_id, limit)

    @staticmethod
    def _recent_attempts(session: Session, learner_id: str, question_id: str, limit: int) -> list[PerformanceRecord]:
        stmt = (
            select(QuestionPerformance)
            .where(
                QuestionPerformance.learner_id == learner_id,
                QuestionPerformance.question_id == question_id,
            )
            .order_by(QuestionPerformance.created_at.desc(), QuestionPerformance.id.desc())
            .limit(limit)
        )
        return [_performance_record(row) for row in session.scalars(stmt)]

    async def get_attempted_question_ids(self, learner_id: str) -> set[str]:
        return await self._run("get_attempted_question_ids", self._attempted_question_ids, learner_id)

    @staticmethod
    def _attempted_question_ids(session: Session, learner_id: str) -> set[str]:
        stmt = select(QuestionPerformance.question_id).where(QuestionPerformance.learner_id == learner_id).distinct()
        return set(session.scalars(stmt))

    async def get_seen_teaching_ids(self, learner_id: str) -> set[str]:
        return await self._run("get_seen_teaching_ids", self._seen_teaching_ids, learner_id)

    @staticmethod
    def _seen_teaching_ids(session: Session, learner_id: str) -> set[str]:
        stmt = select(TeachingCompletion.teaching_id).where(TeachingCompletion.learner_id == learner_id)
        return set(session.scalars(stmt))

    async def get_recent_durations(self, learner_id: str, limit: int = 100) -> list[PerformanceRecord]:
        return await self._run("get_recent_durations", self._recent_durations, learner_id, limit)

    @staticmethod
    def _recent_durations(session: Session, learner_id: str, limit: int) -> list[PerformanceRecord]:
        stmt = (
            select(QuestionPerformance)
            .where(
                QuestionPerformance.learner_id == learner_id,
                QuestionPerformance.time_to_complete_ms.is_not(None),
            )
            .order_by(QuestionPerformance.created_at.desc(), QuestionPerformance.id.desc())
            .limit(limit)
        )
        return [_performance_record(row) for row in session.scalars(stmt)]

    async def get_delivery_method_scores(self, learner_id: str) -> dict[DeliveryMethod, float]:
        return await self._run("get_delivery_method_scores", self._delivery_method_scores, learner_id)

    @staticmethod
    def _delivery_method_scores(session: Session, learner_id: str) -> dict[DeliveryMethod, float]:
        stmt = select(DeliveryMethodScore).where(DeliveryMethodScore.learner_id == learner_id)
        scores: dict[DeliveryMethod, float] = {}
        for row in session.scalars(stmt):
            method = _method(row.delivery_method)
            if method is not None:
                scores[method] = row.score
        return scores

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    async def get_questions(self, question_ids: Iterable[str]) -> list[QuestionRecord]:
        ids = list(dict.fromkeys(question_ids))
        if not ids:
            return []
        return await self._run("get_questions", self._questions, ids)

    @staticmethod
    def _questions(session: Session, ids: list[str]) -> list[QuestionRecord]:
        stmt = (
            select(Question)
            .where(Question.id.in_(ids))
            .options(
                selectinload(Question.variants),
                selectinload(Question.teaching).selectinload(Teaching.lesson),
            )
        )
        by_id = {row.id: _question_record(row) for row in session.scalars(stmt)}
        return [by_id[qid] for qid in ids if qid in by_id]

    async def get_teachings(self, teaching_ids: Iterable[str]) -> list[TeachingRecord]:
        ids = list(dict.fromkeys(teaching_ids))
        if not ids:
            return []
        return await self._run("get_teachings", self._teachings, ids)

    @staticmethod
    def _teachings(session: Session, ids: list[str]) -> list[TeachingRecord]:
        stmt = select(Teaching).where(Teaching.id.in_(ids)).options(selectinload(Teaching.lesson))
        by_id = {row.id: _teaching_record(row) for row in session.scalars(stmt)}
        return [by_id[tid] for tid in ids if tid in by_id]

    async def get_variant_data(self, question_id: str, method: DeliveryMethod) -> Mapping[str, Any] | None:
        return await self._run("get_variant_data", self._variant_data, question_id, method)

    @staticmethod
    def _variant_data(session: Session, question_id: str, method: DeliveryMethod) -> Mapping[str, Any] | None:
        stmt = select(QuestionVariant.data).where(
            QuestionVariant.question_id == question_id,
            QuestionVariant.delivery_method == method.value,
        )
        data = session.scalars(stmt).first()
        return dict(data) if data is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def append_performance(self, learner_id: str, record: PerformanceRecord) -> None:
        await self._run("append_performance", self._append_performance, learner_id, record)

    @staticmethod
    def _append_performance(session: Session, learner_id: str, record: PerformanceRecord) -> None:
        session.add(
            QuestionPerformance(
                learner_id=learner_id,
                question_id=record.question_id,
                score=record.score,
                time_to_complete_ms=record.time_to_complete_ms,
                delivery_method=record.delivery_method.value if record.delivery_method else None,
                next_review_due=record.next_review_due,
                interval_days=record.interval_days,
                stability=record.stability,
                difficulty=record.difficulty,
                repetitions=record.repetitions,
                created_at=record.created_at,
            )
        )

    async def mark_teachings_completed(
        self, learner_id: str, teaching_ids: Iterable[str], completed_at: datetime
    ) -> None:
        ids = list(dict.fromkeys(teaching_ids))
        if not ids:
            return
        await self._run("mark_teachings_completed", self._mark_teachings_completed, learner_id, ids, completed_at)

    @staticmethod
    def _mark_teachings_completed(
        session: Session, learner_id: str, ids: list[str], completed_at: datetime
    ) -> None:
        for teaching_id in ids:
            session.merge(TeachingCompletion(learner_id=learner_id, teaching_id=teaching_id, completed_at=completed_at))


class SqlMasteryStore(_SqlAdapter):
    """MasteryStore backed by the skill_mastery table."""

    async def get(self, learner_id: str, skill_tag: str) -> SkillMastery | None:
        return await self._run("mastery.get", self._get, learner_id, skill_tag)

    @staticmethod
    def _get(session: Session, learner_id: str, skill_tag: str) -> SkillMastery | None:
        row = session.get(SkillMasteryRow, (learner_id, skill_tag))
        return _skill_mastery(row) if row is not None else None

    async def save(self, learner_id: str, mastery: SkillMastery) -> None:
        await self._run("mastery.save", self._save, learner_id, mastery)

    @staticmethod
    def _save(session: Session, learner_id: str, mastery: SkillMastery) -> None:
        session.merge(
            SkillMasteryRow(
                learner_id=learner_id,
                skill_tag=mastery.skill_tag,
                mastery_probability=mastery.mastery_probability,
                prior=mastery.prior,
                learn=mastery.learn,
                guess=mastery.guess,
                slip=mastery.slip,
                last_updated=mastery.last_updated,
            )
        )

    async def list_below(self, learner_id: str, threshold: float) -> list[SkillMastery]:
        return await self._run("mastery.list_below", self._list_below, learner_id, threshold)

    @staticmethod
    def _list_below(session: Session, learner_id: str, threshold: float) -> list[SkillMastery]:
        stmt = (
            select(SkillMasteryRow)
            .where(
                SkillMasteryRow.learner_id == learner_id,
                SkillMasteryRow.mastery_probability < threshold,
            )
            .order_by(SkillMasteryRow.mastery_probability, SkillMasteryRow.skill_tag)
        )
        return [_skill_mastery(row) for row in session.scalars(stmt)]

    async def delete_all(self, learner_id: str) -> int:
        return await self._run("mastery.delete_all", self._delete_all, learner_id)

    @staticmethod
    def _delete_all(session: Session, learner_id: str) -> int:
        result = session.execute(delete(SkillMasteryRow).where(SkillMasteryRow.learner_id == learner_id))
        return result.rowcount or 0


class SqlPreferenceProvider(_SqlAdapter):
    """PreferenceProvider reading stored onboarding answers."""

    async def get_preferences(self, learner_id: str) -> LearnerPreferences | None:
        return await self._run("get_preferences", self._preferences, learner_id)

    @staticmethod
    def _preferences(session: Session, learner_id: str) -> LearnerPreferences | None:
        row = session.get(OnboardingAnswer, learner_id)
        if row is None:
            return None
        return LearnerPreferences(
            challenge_weight=row.challenge_weight if row.challenge_weight is not None else 0.5,
            session_minutes=row.session_minutes,
            learning_styles=tuple(row.learning_styles or ()),
            experience=row.experience,
        )
