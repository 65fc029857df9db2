"""
SQLAlchemy models for the reference persistence adapter.

Content tables (modules, lessons, teachings, questions, variants) plus the
per-learner state the engine reads: performance log, teaching completions,
delivery-method scores, BKT mastery and onboarding answers.

Column types are dialect-neutral (JSON rather than JSONB/ARRAY) so the same
schema runs on PostgreSQL and SQLite.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


# =============================================================================
# Content
# =============================================================================


class Module(Base):
    __tablename__ = "modules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)

    lessons: Mapped[list[Lesson]] = relationship(back_populates="module")

    def __repr__(self) -> str:
        return f"<Module(id={self.id}, title={self.title!r})>"


class Lesson(Base):
    __tablename__ = "lessons"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    module_id: Mapped[str] = mapped_column(ForeignKey("modules.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)

    module: Mapped[Module] = relationship(back_populates="lessons")
    teachings: Mapped[list[Teaching]] = relationship(back_populates="lesson")

    def __repr__(self) -> str:
        return f"<Lesson(id={self.id}, module={self.module_id})>"


class Teaching(Base):
    """A phrase card: learning-language phrase and its user-language translation."""

    __tablename__ = "teachings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    lesson_id: Mapped[str] = mapped_column(ForeignKey("lessons.id", ondelete="CASCADE"), index=True)
    phrase: Mapped[str] = mapped_column(Text, nullable=False)
    translation: Mapped[str] = mapped_column(Text, nullable=False)
    knowledge_level: Mapped[str | None] = mapped_column(String(8))  # CEFR A1..C2
    tip: Mapped[str | None] = mapped_column(Text)
    emoji: Mapped[str | None] = mapped_column(String(16))
    skill_tags: Mapped[list[str]] = mapped_column(JSON, default=list)

    lesson: Mapped[Lesson] = relationship(back_populates="teachings")
    questions: Mapped[list[Question]] = relationship(back_populates="teaching")

    def __repr__(self) -> str:
        return f"<Teaching(id={self.id}, phrase={self.phrase!r})>"


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    teaching_id: Mapped[str] = mapped_column(ForeignKey("teachings.id", ondelete="CASCADE"), index=True)
    skill_tags: Mapped[list[str]] = mapped_column(JSON, default=list)

    teaching: Mapped[Teaching] = relationship(back_populates="questions")
    variants: Mapped[list[QuestionVariant]] = relationship(
        back_populates="question", order_by="QuestionVariant.id"
    )

    def __repr__(self) -> str:
        return f"<Question(id={self.id}, teaching={self.teaching_id})>"


class QuestionVariant(Base):
    """One delivery method a question supports, with its method-specific payload."""

    __tablename__ = "question_variants"
    __table_args__ = (UniqueConstraint("question_id", "delivery_method"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[str] = mapped_column(ForeignKey("questions.id", ondelete="CASCADE"), index=True)
    delivery_method: Mapped[str] = mapped_column(String(32), nullable=False)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    question: Mapped[Question] = relationship(back_populates="variants")

    def __repr__(self) -> str:
        return f"<QuestionVariant(question={self.question_id}, method={self.delivery_method})>"


# =============================================================================
# Learner state
# =============================================================================


class QuestionPerformance(Base):
    """Append-only attempt log written after SRS scheduling."""

    __tablename__ = "question_performances"
    __table_args__ = (Index("ix_perf_learner_question_created", "learner_id", "question_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    question_id: Mapped[str] = mapped_column(ForeignKey("questions.id", ondelete="CASCADE"))
    score: Mapped[float] = mapped_column(Float, nullable=False)
    time_to_complete_ms: Mapped[int | None] = mapped_column(Integer)
    delivery_method: Mapped[str | None] = mapped_column(String(32))

    # Opaque SRS state
    next_review_due: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    interval_days: Mapped[float | None] = mapped_column(Float)
    stability: Mapped[float | None] = mapped_column(Float)
    difficulty: Mapped[float | None] = mapped_column(Float)
    repetitions: Mapped[int | None] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    def __repr__(self) -> str:
        return f"<QuestionPerformance(learner={self.learner_id}, question={self.question_id}, score={self.score})>"


class TeachingCompletion(Base):
    __tablename__ = "teaching_completions"

    learner_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    teaching_id: Mapped[str] = mapped_column(ForeignKey("teachings.id", ondelete="CASCADE"), primary_key=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())


class DeliveryMethodScore(Base):
    """Running per-method performance score (0-1), maintained outside the engine."""

    __tablename__ = "delivery_method_scores"

    learner_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    delivery_method: Mapped[str] = mapped_column(String(32), primary_key=True)
    score: Mapped[float] = mapped_column(Float, default=0.5)


class SkillMasteryRow(Base):
    """BKT state per learner per skill tag."""

    __tablename__ = "skill_mastery"

    learner_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    skill_tag: Mapped[str] = mapped_column(String(128), primary_key=True)
    mastery_probability: Mapped[float] = mapped_column(Float, nullable=False)
    prior: Mapped[float] = mapped_column(Float, nullable=False)
    learn: Mapped[float] = mapped_column(Float, nullable=False)
    guess: Mapped[float] = mapped_column(Float, nullable=False)
    slip: Mapped[float] = mapped_column(Float, nullable=False)
    last_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<SkillMasteryRow(learner={self.learner_id}, skill={self.skill_tag}, p={self.mastery_probability:.3f})>"


class OnboardingAnswer(Base):
    __tablename__ = "onboarding_answers"

    learner_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    challenge_weight: Mapped[float] = mapped_column(Float, default=0.5)
    session_minutes: Mapped[int | None] = mapped_column(Integer)
    learning_styles: Mapped[list[str]] = mapped_column(JSON, default=list)
    experience: Mapped[str | None] = mapped_column(String(64))
