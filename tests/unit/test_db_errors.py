"""
Unit tests for driver-error translation at the SQL boundary.
"""

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from delivery_engine.core.errors import SchemaMismatchError, UpstreamError
from delivery_engine.db.repository import translate_db_error


class FakePgError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


@pytest.mark.parametrize("pgcode", ["42703", "42P01"])
def test_postgres_schema_codes(pgcode):
    exc = ProgrammingError("SELECT 1", {}, FakePgError("column does not exist", pgcode))

    error = translate_db_error(exc, "get_performances")

    assert isinstance(error, SchemaMismatchError)
    assert error.operation == "get_performances"


def test_sqlite_missing_table_message():
    exc = OperationalError("SELECT 1", {}, Exception("no such table: skill_mastery"))
    assert isinstance(translate_db_error(exc, "mastery.get"), SchemaMismatchError)


def test_other_failures_are_upstream():
    exc = OperationalError("SELECT 1", {}, FakePgError("connection refused", "08006"))

    error = translate_db_error(exc, "get_questions")

    assert type(error) is UpstreamError
    assert "connection refused" in str(error)
