"""
Database - Query Retry Policy.

============================================================
RESPONSIBILITY
============================================================
Retries individual database operations that fail with a
transient, pattern-matched error (e.g. SQLITE_BUSY).

- Only errors matching a configured pattern are retried
- At most max_attempts invocations in total
- Capped exponential backoff between attempts
- After the last attempt the original error propagates unchanged

============================================================
MATCHING
============================================================
A matcher is one of:
- str: substring of the error signature
- compiled regex: searched in the error signature
- exception class: isinstance check

The signature is the error message joined with the driver
error beneath a SQLAlchemy DBAPIError and any driver error
codes (sqlite_errorname, pgcode, code). Python's sqlite3
reports SQLITE_BUSY as "database is locked" with
sqlite_errorname "SQLITE_BUSY", so both forms are covered.

============================================================
"""

from typing import Any, Callable, Iterable, List, Optional, Pattern, Sequence, Tuple, Union
import functools
import logging
import re
import time

from core.exceptions import ConfigurationError

from .config import DEFAULT_RETRY_MATCH, split_match_list


logger = logging.getLogger(__name__)


Matcher = Union[str, Pattern, type]

_CODE_ATTRIBUTES = ("sqlite_errorname", "pgcode", "code")


def parse_matchers(value: Union[str, Iterable[Matcher]]) -> Tuple[Matcher, ...]:
    """
    Normalize matcher configuration.

    A string is split on commas (surrounding whitespace ignored);
    an iterable is taken as-is, with empty strings dropped.
    """
    if isinstance(value, str):
        return split_match_list(value)
    matchers = []
    for item in value:
        if isinstance(item, str):
            if item.strip():
                matchers.append(item.strip())
        elif isinstance(item, (type, re.Pattern)):
            matchers.append(item)
        else:
            raise ConfigurationError(
                message=f"unsupported retry matcher: {item!r}",
                config_key="db-query-retry-match",
                actual_value=item,
            )
    return tuple(matchers)


def error_signature(error: Optional[BaseException]) -> str:
    """Text that retry matchers are checked against."""
    if error is None:
        return ""

    parts: List[str] = []
    sources = [error]
    orig = getattr(error, "orig", None)
    if isinstance(orig, BaseException) and orig is not error:
        sources.append(orig)

    for source in sources:
        message = str(source).strip()
        if message:
            parts.append(message)
        for attr in _CODE_ATTRIBUTES:
            code = getattr(source, attr, None)
            if code:
                parts.append(str(code))

    return " | ".join(parts)


# ============================================================
# RETRY POLICY
# ============================================================

class RetryPolicy:
    """
    Pattern-matched retry for database operations.

    Usage:
        policy = RetryPolicy(max_attempts=5, match=["SQLITE_BUSY"])
        rows = policy.execute(run_query, statement)

        @policy
        def write_row(...):
            ...
    """

    def __init__(
        self,
        max_attempts: int = 5,
        match: Union[str, Sequence[Matcher]] = (DEFAULT_RETRY_MATCH,),
        backoff_base: float = 0.1,
        backoff_factor: float = 2.0,
        backoff_max: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the policy.

        Args:
            max_attempts: Total invocations allowed, including the first
            match: Matchers, or a comma-separated string of patterns
            backoff_base: Delay before the first retry (seconds)
            backoff_factor: Multiplier applied per further retry
            backoff_max: Upper bound on a single delay (seconds)
            sleep: Sleep function (injectable for tests)

        Raises:
            ConfigurationError: If max_attempts < 1 or backoff is negative
        """
        if max_attempts < 1:
            raise ConfigurationError(
                message=f"retry max attempts must be at least 1, got {max_attempts}",
                config_key="db-query-retry-max",
                actual_value=max_attempts,
            )
        if backoff_base < 0 or backoff_max < 0 or backoff_factor < 1:
            raise ConfigurationError(message="invalid retry backoff settings")

        self.max_attempts = max_attempts
        self.matchers = parse_matchers(match)
        self.backoff_base = backoff_base
        self.backoff_factor = backoff_factor
        self.backoff_max = backoff_max
        self._sleep = sleep

    @classmethod
    def from_config(cls, config, **kwargs) -> "RetryPolicy":
        """Build from a DatabaseConfig's retry_max and retry_match."""
        return cls(max_attempts=config.retry_max, match=config.retry_match, **kwargs)

    # --------------------------------------------------------
    # MATCHING
    # --------------------------------------------------------

    def matches(self, error: Optional[BaseException]) -> bool:
        """Check if an error is eligible for retry."""
        if error is None or not self.matchers:
            return False

        signature = error_signature(error)
        if not signature:
            return False

        orig = getattr(error, "orig", None)
        for matcher in self.matchers:
            if isinstance(matcher, type):
                if isinstance(error, matcher) or isinstance(orig, matcher):
                    return True
            elif isinstance(matcher, re.Pattern):
                if matcher.search(signature):
                    return True
            elif matcher in signature:
                return True
        return False

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        delay = self.backoff_base * (self.backoff_factor ** max(attempt - 1, 0))
        return min(delay, self.backoff_max)

    # --------------------------------------------------------
    # EXECUTION
    # --------------------------------------------------------

    def execute(self, operation: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Run an operation under the policy.

        Returns:
            The operation's result

        Raises:
            The operation's last error, unchanged
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation(*args, **kwargs)
            except Exception as e:
                if attempt >= self.max_attempts or not self.matches(e):
                    if attempt > 1:
                        logger.error(
                            f"Operation failed after {attempt} attempt(s): {e}"
                        )
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    f"Retryable error on attempt {attempt}/{self.max_attempts}, "
                    f"retrying in {delay:.2f}s: {e}"
                )
                self._sleep(delay)

    def __call__(self, func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return self.execute(func, *args, **kwargs)

        return wrapper


__all__ = [
    "RetryPolicy",
    "parse_matchers",
    "error_signature",
]
