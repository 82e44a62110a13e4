# accounting/retry.py
"""
Bounded retry policy for lock conflicts.

Deadlocks and lock wait timeouts are transient: the whole unit of work is
rolled back by the database and can simply be run again. Everything else
(business rejections, unbalanced entries, integrity errors) propagates on
the first attempt.

Usage:
    policy = RetryPolicy(attempts=3, base_delay=0.1)
    result = policy.run(atomic_fn, *args, **kwargs)
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional
import logging
import time

from django.conf import settings
from django.db import DatabaseError

from accounting.exceptions import TransientConflictError


logger = logging.getLogger(__name__)


# MySQL: 1213 deadlock, 1205 lock wait timeout
MYSQL_TRANSIENT_CODES = {1213, 1205}
# PostgreSQL SQLSTATE: deadlock_detected, serialization_failure, lock_not_available
POSTGRES_TRANSIENT_SQLSTATES = {"40P01", "40001", "55P03"}
TRANSIENT_MESSAGES = (
    "deadlock",
    "lock wait timeout",
    "database is locked",
    "could not serialize access",
)


def is_transient_conflict(exc: BaseException) -> bool:
    """Classify a database error as a retryable lock conflict."""
    if not isinstance(exc, DatabaseError):
        return False

    cause = exc.__cause__ or exc
    sqlstate = getattr(cause, "sqlstate", None) or getattr(cause, "pgcode", None)
    if sqlstate in POSTGRES_TRANSIENT_SQLSTATES:
        return True

    args = getattr(cause, "args", ()) or ()
    if args and isinstance(args[0], int) and args[0] in MYSQL_TRANSIENT_CODES:
        return True

    message = str(exc).lower()
    return any(fragment in message for fragment in TRANSIENT_MESSAGES)


def _default_sleep(seconds: float) -> None:
    time.sleep(seconds)


@dataclass
class RetryPolicy:
    """
    Retry a unit of work on transient conflicts.

    Delay before retry n (1-based) is ``2**n * base_delay`` seconds:
    200ms, 400ms, ... with the default base delay of 100ms.
    """

    attempts: int = 3
    base_delay: float = 0.1
    sleep: Callable[[float], None] = field(default=_default_sleep, repr=False)
    on_retry: Optional[Callable[[int, BaseException], None]] = field(default=None, repr=False)

    def backoff(self, attempt: int) -> float:
        return (2 ** attempt) * self.base_delay

    def run(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.attempts + 1):
            try:
                return func(*args, **kwargs)
            except DatabaseError as exc:
                if not is_transient_conflict(exc):
                    raise
                last_error = exc
                if attempt == self.attempts:
                    break
                delay = self.backoff(attempt)
                logger.warning(
                    f"Transient conflict on attempt {attempt}/{self.attempts}, "
                    f"retrying in {delay:.2f}s: {exc}"
                )
                if self.on_retry is not None:
                    self.on_retry(attempt, exc)
                self.sleep(delay)

        raise TransientConflictError(
            f"Gave up after {self.attempts} attempts: {last_error}",
            attempts=self.attempts,
            last_error=last_error,
        )


def default_retry_policy() -> RetryPolicy:
    from ops.metrics import record_retry

    return RetryPolicy(
        attempts=int(getattr(settings, "LEDGER_RETRY_ATTEMPTS", 3)),
        base_delay=float(getattr(settings, "LEDGER_RETRY_BASE_DELAY", 0.1)),
        on_retry=lambda attempt, exc: record_retry(),
    )
