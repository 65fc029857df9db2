"""
Integration tests for the SQL adapter against a file-backed SQLite database.

A file database (rather than :memory:) lets the concurrent to_thread reads
each check out their own connection.
"""

import random
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine

from config import Settings
from delivery_engine.core.errors import SchemaMismatchError
from delivery_engine.core.models import (
    DeliveryMethod,
    PerformanceRecord,
    SessionContext,
    SessionMode,
    SkillMastery,
    StepType,
)
from delivery_engine.db.database import init_db, make_session_factory, session_scope
from delivery_engine.db.models import (
    Base,
    DeliveryMethodScore,
    Lesson,
    Module,
    OnboardingAnswer,
    Question,
    QuestionPerformance,
    QuestionVariant,
    Teaching,
    TeachingCompletion,
)
from delivery_engine.db.repository import SqlContentRepository, SqlMasteryStore, SqlPreferenceProvider
from delivery_engine.planning.service import ContentDeliveryService

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
LEARNER = "learner-1"


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'delivery.db'}", connect_args={"check_same_thread": False})
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    init_db(engine)
    factory = make_session_factory(engine)
    with session_scope(factory) as session:
        session.add_all(
            [
                Module(id="m1", title="Basics"),
                Module(id="m2", title="Travel"),
                Lesson(id="l1", module_id="m1", title="Greetings"),
                Lesson(id="l2", module_id="m2", title="At the airport"),
            ]
        )
        session.flush()
        session.add_all(
            [
                Teaching(
                    id="t1",
                    lesson_id="l1",
                    phrase="Hola",
                    translation="Hello",
                    knowledge_level="A1",
                    emoji="👋",
                    skill_tags=["greetings", "greetings"],
                ),
                Teaching(id="t2", lesson_id="l2", phrase="Pasaporte", translation="Passport", knowledge_level="A2"),
            ]
        )
        session.flush()
        session.add_all(
            [
                Question(id="q1", teaching_id="t1", skill_tags=["pronunciation"]),
                Question(id="q2", teaching_id="t2"),
            ]
        )
        session.flush()
        session.add_all(
            [
                QuestionVariant(
                    question_id="q1",
                    delivery_method="flashcard",
                    data={"source": "Hola", "answer": "Hello"},
                ),
                QuestionVariant(question_id="q1", delivery_method="speech_to_text", data={"answer": "hola"}),
                QuestionVariant(question_id="q1", delivery_method="semaphore", data={}),
                QuestionVariant(
                    question_id="q2",
                    delivery_method="multiple_choice",
                    data={"options": ["Passport", "Ticket"], "correct_option_id": "0"},
                ),
            ]
        )
    return factory


@pytest.fixture
def repository(session_factory):
    return SqlContentRepository(session_factory)


def add_performance(factory, question_id, created_at, next_review_due=None, score=100.0, **kwargs):
    with session_scope(factory) as session:
        session.add(
            QuestionPerformance(
                learner_id=LEARNER,
                question_id=question_id,
                score=score,
                created_at=created_at,
                next_review_due=next_review_due,
                **kwargs,
            )
        )


class TestContentQueries:
    @pytest.mark.asyncio
    async def test_scope_lookup(self, repository):
        assert await repository.get_question_ids_in_scope() == ["q1", "q2"]
        assert await repository.get_question_ids_in_scope(lesson_id="l2") == ["q2"]
        assert await repository.get_question_ids_in_scope(module_id="m1") == ["q1"]
        assert await repository.get_question_ids_in_scope(lesson_id="l1", module_id="m2") == ["q1"]
        assert await repository.get_question_ids_in_scope(lesson_id="nope") == []

    @pytest.mark.asyncio
    async def test_question_records(self, repository):
        q2, q1 = await repository.get_questions(["q2", "missing", "q1"])

        assert q1.id == "q1"
        assert q1.delivery_methods == (DeliveryMethod.FLASHCARD, DeliveryMethod.SPEECH_TO_TEXT)
        assert q1.skill_tags == ("pronunciation",)
        assert q1.teaching.skill_tags == ("greetings",)
        assert q1.teaching.module_id == "m1"
        assert q1.teaching.emoji == "👋"
        assert q2.lesson_id == "l2"

    @pytest.mark.asyncio
    async def test_teaching_records(self, repository):
        [t2] = await repository.get_teachings(["t2"])
        assert (t2.phrase, t2.translation, t2.module_id) == ("Pasaporte", "Passport", "m2")
        assert await repository.get_teachings([]) == []

    @pytest.mark.asyncio
    async def test_variant_data(self, repository):
        data = await repository.get_variant_data("q1", DeliveryMethod.FLASHCARD)
        assert data == {"source": "Hola", "answer": "Hello"}
        assert await repository.get_variant_data("q1", DeliveryMethod.FILL_BLANK) is None


class TestHistory:
    @pytest.mark.asyncio
    async def test_performances_newest_first_and_timezone_aware(self, repository, session_factory):
        add_performance(session_factory, "q1", NOW - timedelta(days=3), NOW - timedelta(days=1), score=40)
        add_performance(session_factory, "q1", NOW - timedelta(days=1), NOW + timedelta(days=2))
        add_performance(session_factory, "q2", NOW - timedelta(days=2), NOW - timedelta(hours=5))

        rows = await repository.get_performances(LEARNER)
        scoped = await repository.get_performances(LEARNER, ["q2"])

        assert [r.created_at for r in rows] == sorted((r.created_at for r in rows), reverse=True)
        assert rows[0].created_at == NOW - timedelta(days=1)
        assert rows[0].next_review_due.tzinfo is not None
        assert [r.question_id for r in scoped] == ["q2"]
        assert await repository.get_performances(LEARNER, []) == []

    @pytest.mark.asyncio
    async def test_append_and_read_back(self, repository):
        record = PerformanceRecord(
            question_id="q2",
            score=75.0,
            created_at=NOW,
            next_review_due=NOW + timedelta(days=1),
            time_to_complete_ms=8_000,
            delivery_method=DeliveryMethod.MULTIPLE_CHOICE,
            interval_days=1.0,
            repetitions=2,
        )

        await repository.append_performance(LEARNER, record)

        assert await repository.get_recent_attempts(LEARNER, "q2") == [record]
        assert await repository.get_attempted_question_ids(LEARNER) == {"q2"}
        assert await repository.get_recent_durations(LEARNER) == [record]

    @pytest.mark.asyncio
    async def test_recent_attempts_limit(self, repository, session_factory):
        for days in range(7):
            add_performance(session_factory, "q1", NOW - timedelta(days=days), score=days * 10)

        attempts = await repository.get_recent_attempts(LEARNER, "q1", limit=5)

        assert [a.score for a in attempts] == [0, 10, 20, 30, 40]

    @pytest.mark.asyncio
    async def test_teaching_completions_are_idempotent(self, repository):
        await repository.mark_teachings_completed(LEARNER, ["t1", "t1"], NOW)
        await repository.mark_teachings_completed(LEARNER, ["t1", "t2"], NOW)

        assert await repository.get_seen_teaching_ids(LEARNER) == {"t1", "t2"}

    @pytest.mark.asyncio
    async def test_method_scores_skip_unknown_methods(self, repository, session_factory):
        with session_scope(session_factory) as session:
            session.add_all(
                [
                    DeliveryMethodScore(learner_id=LEARNER, delivery_method="fill_blank", score=0.8),
                    DeliveryMethodScore(learner_id=LEARNER, delivery_method="carrier_pigeon", score=0.9),
                ]
            )

        assert await repository.get_delivery_method_scores(LEARNER) == {DeliveryMethod.FILL_BLANK: 0.8}


class TestMasteryAndPreferences:
    @pytest.mark.asyncio
    async def test_mastery_store_round_trip(self, session_factory):
        store = SqlMasteryStore(session_factory)
        await store.save(LEARNER, SkillMastery("greetings", 0.3, 0.3, 0.2, 0.2, 0.1, last_updated=NOW))
        await store.save(LEARNER, SkillMastery("greetings", 0.45, 0.3, 0.2, 0.2, 0.1, last_updated=NOW))
        await store.save(LEARNER, SkillMastery("travel", 0.9, 0.3, 0.2, 0.2, 0.1))

        record = await store.get(LEARNER, "greetings")

        assert record.mastery_probability == 0.45
        assert record.last_updated == NOW
        assert [m.skill_tag for m in await store.list_below(LEARNER, 0.5)] == ["greetings"]
        assert await store.get(LEARNER, "unknown") is None
        assert await store.delete_all(LEARNER) == 2
        assert await store.list_below(LEARNER, 1.0) == []

    @pytest.mark.asyncio
    async def test_preferences(self, session_factory):
        with session_scope(session_factory) as session:
            session.add(
                OnboardingAnswer(
                    learner_id=LEARNER,
                    challenge_weight=0.8,
                    session_minutes=15,
                    learning_styles=["visual"],
                    experience="beginner",
                )
            )
        provider = SqlPreferenceProvider(session_factory)

        prefs = await provider.get_preferences(LEARNER)

        assert (prefs.challenge_weight, prefs.session_minutes) == (0.8, 15)
        assert prefs.learning_styles == ("visual",)
        assert await provider.get_preferences("someone-else") is None


class TestSchemaMismatch:
    @pytest.fixture
    def partial_factory(self, engine):
        tables = [t for name, t in Base.metadata.tables.items() if name != TeachingCompletion.__tablename__]
        Base.metadata.create_all(engine, tables=tables)
        return make_session_factory(engine)

    @pytest.mark.asyncio
    async def test_missing_table_raises_schema_mismatch(self, partial_factory):
        repository = SqlContentRepository(partial_factory)

        with pytest.raises(SchemaMismatchError) as excinfo:
            await repository.get_seen_teaching_ids(LEARNER)

        assert excinfo.value.operation == "get_seen_teaching_ids"
        assert excinfo.value.__cause__ is not None

    @pytest.mark.asyncio
    async def test_planner_degrades_over_missing_table(self, partial_factory):
        with session_scope(partial_factory) as session:
            session.add(Module(id="m1", title="Basics"))
            session.add(Lesson(id="l1", module_id="m1", title="Greetings"))
            session.flush()
            session.add(Teaching(id="t1", lesson_id="l1", phrase="Hola", translation="Hello"))
            session.flush()
            session.add(Question(id="q1", teaching_id="t1"))

        service = ContentDeliveryService.create(
            SqlContentRepository(partial_factory),
            SqlMasteryStore(partial_factory),
            SqlPreferenceProvider(partial_factory),
            settings=Settings(),
            rng=random.Random(1),
            clock=lambda: NOW,
        )

        plan = await service.get_session_plan(LEARNER, SessionContext(mode=SessionMode.LEARN))

        # no variants: the question gets a generic step
        assert [s.type for s in plan.steps] == [StepType.TEACH, StepType.PRACTICE, StepType.RECAP]
        assert plan.steps[1].item.answer == "Hello"


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_plan_from_database(self, session_factory):
        add_performance(session_factory, "q2", NOW - timedelta(days=2), NOW - timedelta(hours=5), score=60)
        service = ContentDeliveryService.create(
            SqlContentRepository(session_factory),
            SqlMasteryStore(session_factory),
            SqlPreferenceProvider(session_factory),
            settings=Settings(),
            rng=random.Random(3),
            clock=lambda: NOW,
        )

        plan = await service.get_session_plan(LEARNER, SessionContext(mode=SessionMode.MIXED))

        practice = {s.item.question_id: s for s in plan.steps_of_type(StepType.PRACTICE)}
        assert set(practice) == {"q1", "q2"}
        assert practice["q2"].rationale == "Due review"
        assert practice["q2"].item.options is not None
        assert practice["q1"].delivery_method in (DeliveryMethod.FLASHCARD, DeliveryMethod.SPEECH_TO_TEXT)
        assert [s.item.teaching_id for s in plan.steps_of_type(StepType.TEACH)] == ["t1"]
        assert plan.metadata.due_reviews_included == 1
        assert plan.metadata.new_items_included == 1
