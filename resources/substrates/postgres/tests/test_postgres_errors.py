"""Tests for Postgres exception normalization into shared error taxonomy."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from packages.ledger_shared.errors import ErrorCategory, codes
from resources.substrates.postgres.errors import (
    is_database_error,
    normalize_postgres_error,
)


def _driver_error(exc_type: type[Exception]) -> Exception:
    return exc_type("INSERT INTO audit_events ...", {}, Exception("driver"))


def test_integrity_error_maps_to_conflict() -> None:
    error = normalize_postgres_error(_driver_error(IntegrityError))

    assert error.category == ErrorCategory.CONFLICT
    assert error.code == codes.ALREADY_EXISTS
    assert error.metadata["exception_type"] == "IntegrityError"


def test_operational_error_maps_to_retryable_dependency() -> None:
    error = normalize_postgres_error(_driver_error(OperationalError))

    assert error.category == ErrorCategory.DEPENDENCY
    assert error.code == codes.DEPENDENCY_UNAVAILABLE
    assert error.retryable is True


def test_programming_errors_map_to_non_retryable_dependency() -> None:
    class ProgrammingError(Exception):
        pass

    error = normalize_postgres_error(ProgrammingError("bad SQL"))

    assert error.code == codes.DEPENDENCY_FAILURE
    assert error.retryable is False


def test_unknown_exception_maps_to_internal() -> None:
    error = normalize_postgres_error(RuntimeError("boom"))

    assert error.category == ErrorCategory.INTERNAL
    assert error.code == codes.UNEXPECTED_EXCEPTION


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (_driver_error(OperationalError), True),
        (RuntimeError("boom"), False),
        (ValueError("bad"), False),
    ],
)
def test_is_database_error_detects_driver_stack(exc: Exception, expected: bool) -> None:
    assert is_database_error(exc) is expected
