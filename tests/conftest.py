"""
Pytest Configuration and Fixtures.

Provides in-memory fakes for the engine's collaborator Protocols, a fixed
clock and candidate factories shared by the unit tests.
"""
import dataclasses
import random
import sys
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from delivery_engine.core.models import (  # noqa: E402
    DeliveryMethod,
    LearnerPreferences,
    PerformanceRecord,
    QuestionCandidate,
    QuestionRecord,
    SrsState,
    TeachingCandidate,
    TeachingRecord,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite in-memory database)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# =============================================================================
# Fakes
# =============================================================================


class FakeContentRepository:
    """ContentRepository over plain dicts. `failures` maps method name -> exception to raise."""

    def __init__(self):
        self.teachings: dict[str, TeachingRecord] = {}
        self.questions: dict[str, QuestionRecord] = {}
        self.variants: dict[tuple[str, DeliveryMethod], dict] = {}
        self.performances: dict[str, list[PerformanceRecord]] = defaultdict(list)
        self.completions: dict[str, dict[str, datetime]] = defaultdict(dict)
        self.method_scores: dict[str, dict[DeliveryMethod, float]] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[str] = []

    # --- seeding -------------------------------------------------------

    def add_teaching(
        self,
        teaching_id,
        lesson_id="lesson-1",
        module_id="module-1",
        phrase=None,
        translation=None,
        knowledge_level="A1",
        tip=None,
        emoji=None,
        skill_tags=(),
    ) -> TeachingRecord:
        teaching = TeachingRecord(
            id=teaching_id,
            lesson_id=lesson_id,
            phrase=phrase or f"phrase {teaching_id}",
            translation=translation or f"translation {teaching_id}",
            knowledge_level=knowledge_level,
            tip=tip,
            emoji=emoji,
            module_id=module_id,
            skill_tags=tuple(skill_tags),
        )
        self.teachings[teaching_id] = teaching
        return teaching

    def add_question(self, question_id, teaching, methods=(DeliveryMethod.FLASHCARD,), skill_tags=(), variants=None):
        question = QuestionRecord(
            id=question_id,
            teaching=teaching,
            delivery_methods=tuple(methods),
            skill_tags=tuple(skill_tags),
        )
        self.questions[question_id] = question
        for method, data in (variants or {}).items():
            self.variants[(question_id, method)] = data
        return question

    def add_performance(self, learner_id, question_id, score=100.0, created_at=None, next_review_due=None, **kwargs):
        record = PerformanceRecord(
            question_id=question_id,
            score=score,
            created_at=created_at or NOW - timedelta(days=1),
            next_review_due=next_review_due,
            **kwargs,
        )
        self.performances[learner_id].append(record)
        return record

    def _check(self, name):
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    def _newest_first(self, learner_id):
        return sorted(self.performances[learner_id], key=lambda p: p.created_at, reverse=True)

    # --- ContentRepository ---------------------------------------------

    async def get_question_ids_in_scope(self, lesson_id=None, module_id=None):
        self._check("get_question_ids_in_scope")
        ids = []
        for question in self.questions.values():
            if lesson_id and question.teaching.lesson_id != lesson_id:
                continue
            if not lesson_id and module_id and question.teaching.module_id != module_id:
                continue
            ids.append(question.id)
        return ids

    async def get_performances(self, learner_id, question_ids=None):
        self._check("get_performances")
        rows = self._newest_first(learner_id)
        if question_ids is not None:
            wanted = set(question_ids)
            rows = [p for p in rows if p.question_id in wanted]
        return rows

    async def get_recent_attempts(self, learner_id, question_id, limit=5):
        self._check("get_recent_attempts")
        return [p for p in self._newest_first(learner_id) if p.question_id == question_id][:limit]

    async def get_questions(self, question_ids):
        self._check("get_questions")
        return [self.questions[qid] for qid in question_ids if qid in self.questions]

    async def get_teachings(self, teaching_ids):
        self._check("get_teachings")
        return [self.teachings[tid] for tid in teaching_ids if tid in self.teachings]

    async def get_attempted_question_ids(self, learner_id):
        self._check("get_attempted_question_ids")
        return {p.question_id for p in self.performances[learner_id]}

    async def get_seen_teaching_ids(self, learner_id):
        self._check("get_seen_teaching_ids")
        return set(self.completions[learner_id])

    async def get_recent_durations(self, learner_id, limit=100):
        self._check("get_recent_durations")
        return [p for p in self._newest_first(learner_id) if p.time_to_complete_ms][:limit]

    async def get_delivery_method_scores(self, learner_id):
        self._check("get_delivery_method_scores")
        return dict(self.method_scores.get(learner_id, {}))

    async def get_variant_data(self, question_id, method):
        self._check("get_variant_data")
        return self.variants.get((question_id, method))

    async def append_performance(self, learner_id, record):
        self._check("append_performance")
        self.performances[learner_id].append(record)

    async def mark_teachings_completed(self, learner_id, teaching_ids, completed_at):
        self._check("mark_teachings_completed")
        for teaching_id in teaching_ids:
            self.completions[learner_id][teaching_id] = completed_at


class FakeMasteryStore:
    def __init__(self):
        self.records = {}
        self.failures: dict[str, Exception] = {}

    async def get(self, learner_id, skill_tag):
        record = self.records.get((learner_id, skill_tag))
        return dataclasses.replace(record) if record is not None else None

    async def save(self, learner_id, mastery):
        self.records[(learner_id, mastery.skill_tag)] = dataclasses.replace(mastery)

    async def list_below(self, learner_id, threshold):
        if "list_below" in self.failures:
            raise self.failures["list_below"]
        rows = [r for (lid, _), r in self.records.items() if lid == learner_id and r.mastery_probability < threshold]
        return sorted(rows, key=lambda r: r.mastery_probability)

    async def delete_all(self, learner_id):
        keys = [k for k in self.records if k[0] == learner_id]
        for key in keys:
            del self.records[key]
        return len(keys)


class FakePreferenceProvider:
    def __init__(self, preferences=None):
        self.preferences: dict[str, LearnerPreferences] = dict(preferences or {})

    async def get_preferences(self, learner_id):
        return self.preferences.get(learner_id)


class FakeSrsScheduler:
    """Next review in one day when correct, ten minutes otherwise."""

    def __init__(self):
        self.calls = []

    async def schedule(self, learner_id, question_id, result):
        self.calls.append((learner_id, question_id, result))
        if result.correct:
            return SrsState(next_review_due=NOW + timedelta(days=1), interval_days=1.0, repetitions=1)
        return SrsState(next_review_due=NOW + timedelta(minutes=10), interval_days=0.0, repetitions=0)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def repository():
    return FakeContentRepository()


@pytest.fixture
def mastery_store():
    return FakeMasteryStore()


@pytest.fixture
def preference_provider():
    return FakePreferenceProvider()


@pytest.fixture
def srs_scheduler():
    return FakeSrsScheduler()


@pytest.fixture
def make_question():
    """Factory for QuestionCandidate with sensible defaults."""

    def _make(candidate_id, **overrides):
        fields = {
            "teaching_id": f"t-{candidate_id}",
            "lesson_id": "lesson-1",
            "exercise_type": "vocabulary",
            "difficulty": 0.5,
            "estimated_mastery": 0.5,
            "delivery_methods": (DeliveryMethod.FLASHCARD,),
        }
        fields.update(overrides)
        return QuestionCandidate(id=candidate_id, **fields)

    return _make


@pytest.fixture
def make_teaching():
    """Factory for TeachingCandidate; id doubles as teaching_id."""

    def _make(teaching_id, **overrides):
        fields = {
            "teaching_id": teaching_id,
            "lesson_id": "lesson-1",
            "exercise_type": "teaching",
            "difficulty": 0.1,
        }
        fields.update(overrides)
        return TeachingCandidate(id=teaching_id, **fields)

    return _make


@pytest.fixture
def log_records():
    """Capture loguru records at WARNING and above."""
    from loguru import logger

    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="WARNING")
    yield records
    logger.remove(handler_id)


@pytest.fixture
def make_plan():
    """Factory for a minimal (recap-only) SessionPlan."""
    from delivery_engine.core.models import SessionMetadata, SessionMode, SessionPlan

    def _make(plan_id="plan-1", kind=SessionMode.MIXED):
        metadata = SessionMetadata(
            total_estimated_time_sec=10,
            total_steps=1,
            teach_steps=0,
            practice_steps=0,
            recap_steps=1,
            potential_xp=0,
            due_reviews_included=0,
            new_items_included=0,
        )
        return SessionPlan(id=plan_id, kind=kind, steps=(), metadata=metadata, created_at=NOW)

    return _make
