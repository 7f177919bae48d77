"""
Tests for the query retry policy.

============================================================
PURPOSE
============================================================
- Only matched errors are retried
- Attempts are bounded and the original error propagates
- Backoff grows and is capped
- Driver errors beneath SQLAlchemy errors are matched

============================================================
"""

import logging
import re
import sqlite3
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from core.exceptions import ConfigurationError, TransientOperationError
from database.config import DatabaseConfig
from database.retry import RetryPolicy, error_signature, parse_matchers


class BusyError(Exception):
    pass


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def policy(sleeps):
    return RetryPolicy(max_attempts=5, match=["SQLITE_BUSY"], sleep=sleeps.append)


def flaky(failures, result="ok", error_factory=lambda: BusyError("SQLITE_BUSY: database is locked")):
    """Operation that fails `failures` times, then returns `result`."""
    calls = {"count": 0}

    def operation():
        calls["count"] += 1
        if calls["count"] <= failures:
            raise error_factory()
        return result

    operation.calls = calls
    return operation


# ============================================================
# MATCHERS
# ============================================================

class TestMatchers:
    """Tests for matcher parsing and error signatures."""

    def test_parse_comma_separated(self):
        assert parse_matchers(" SQLITE_BUSY , deadlock ,") == ("SQLITE_BUSY", "deadlock")

    def test_parse_mixed_iterable(self):
        pattern = re.compile("dead ?lock")
        matchers = parse_matchers(["SQLITE_BUSY", "", pattern, TransientOperationError])

        assert matchers == ("SQLITE_BUSY", pattern, TransientOperationError)

    def test_parse_rejects_unknown_matcher(self):
        with pytest.raises(ConfigurationError):
            parse_matchers([42])

    def test_signature_includes_driver_error_and_code(self):
        orig = sqlite3.OperationalError("database is locked")
        orig.sqlite_errorname = "SQLITE_BUSY"
        error = OperationalError("INSERT INTO t VALUES (1)", {}, orig)

        signature = error_signature(error)

        assert "database is locked" in signature
        assert "SQLITE_BUSY" in signature

    def test_empty_signature(self):
        assert error_signature(Exception()) == ""
        assert error_signature(None) == ""


# ============================================================
# MATCHING
# ============================================================

class TestMatching:
    """Tests for RetryPolicy.matches."""

    def test_substring_match(self, policy):
        assert policy.matches(BusyError("SQLITE_BUSY: database is locked"))
        assert not policy.matches(ValueError("constraint failed"))

    def test_sqlalchemy_wrapped_sqlite_busy(self, policy):
        orig = sqlite3.OperationalError("database is locked")
        orig.sqlite_errorname = "SQLITE_BUSY"

        assert policy.matches(OperationalError("SELECT 1", {}, orig))

    def test_regex_match(self):
        policy = RetryPolicy(match=[re.compile(r"dead ?lock", re.IGNORECASE)])

        assert policy.matches(RuntimeError("Deadlock found when trying to get lock"))
        assert not policy.matches(RuntimeError("duplicate key"))

    def test_class_match(self):
        policy = RetryPolicy(match=[TransientOperationError])

        assert policy.matches(TransientOperationError("busy"))
        assert not policy.matches(RuntimeError("busy"))

    def test_error_without_signature_never_matches(self):
        policy = RetryPolicy(match=[Exception, "x"])

        assert not policy.matches(Exception())

    def test_empty_match_list_never_retries(self):
        assert not RetryPolicy(match="").matches(BusyError("SQLITE_BUSY"))


# ============================================================
# EXECUTION
# ============================================================

class TestExecute:
    """Tests for RetryPolicy.execute."""

    def test_success_after_retries(self, policy, sleeps):
        operation = flaky(2)

        assert policy.execute(operation) == "ok"
        assert operation.calls["count"] == 3
        assert sleeps == [0.1, 0.2]

    def test_first_attempt_success(self, policy, sleeps):
        operation = MagicMock(return_value=7)

        assert policy.execute(operation, 1, key="v") == 7
        operation.assert_called_once_with(1, key="v")
        assert sleeps == []

    def test_non_matching_error_is_not_retried(self, policy, sleeps):
        operation = flaky(1, error_factory=lambda: ValueError("constraint failed"))

        with pytest.raises(ValueError, match="constraint failed"):
            policy.execute(operation)

        assert operation.calls["count"] == 1
        assert sleeps == []

    def test_exhaustion_reraises_original_error(self, sleeps, caplog):
        error = BusyError("SQLITE_BUSY")
        operation = MagicMock(side_effect=error)
        policy = RetryPolicy(max_attempts=3, match="SQLITE_BUSY", sleep=sleeps.append)

        with caplog.at_level(logging.WARNING, logger="database.retry"):
            with pytest.raises(BusyError) as exc_info:
                policy.execute(operation)

        assert exc_info.value is error
        assert operation.call_count == 3
        assert sleeps == [0.1, 0.2]
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(warnings) == 2
        assert len(errors) == 1
        assert "after 3 attempt(s)" in errors[0].getMessage()

    def test_single_attempt_policy(self, sleeps):
        policy = RetryPolicy(max_attempts=1, sleep=sleeps.append)
        operation = flaky(1)

        with pytest.raises(BusyError):
            policy.execute(operation)
        assert sleeps == []

    def test_backoff_is_capped(self):
        policy = RetryPolicy(backoff_base=0.5, backoff_factor=3.0, backoff_max=2.0)

        assert policy.delay_for(1) == 0.5
        assert policy.delay_for(2) == 1.5
        assert policy.delay_for(3) == 2.0
        assert policy.delay_for(10) == 2.0

    def test_decorator(self, policy, sleeps):
        operation = flaky(1, result=42)

        @policy
        def read_value():
            return operation()

        assert read_value() == 42
        assert read_value.__name__ == "read_value"
        assert sleeps == [0.1]


# ============================================================
# CONFIGURATION
# ============================================================

class TestRetryConfiguration:
    """Tests for building policies."""

    def test_max_attempts_below_one(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RetryPolicy(max_attempts=0)
        assert exc_info.value.context["config_key"] == "db-query-retry-max"

    def test_invalid_backoff(self):
        with pytest.raises(ConfigurationError):
            RetryPolicy(backoff_factor=0.5)

    def test_from_config(self):
        config = DatabaseConfig(retry_max=2, retry_match="SQLITE_BUSY, deadlock")

        policy = RetryPolicy.from_config(config)

        assert policy.max_attempts == 2
        assert policy.matchers == ("SQLITE_BUSY", "deadlock")
