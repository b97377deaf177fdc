"""
Retry mechanism with exponential backoff, jitter and idempotency gating.
"""

import random
import time
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from clickhouse_http.config import ClickHouseSettings
from clickhouse_http.errors import (
    AuthenticationError,
    ConnectionError,
    ConnectionNotEstablished,
    ConnectionTimeout,
    PoolError,
    QueryError,
    SSLError,
    StatementInvalid,
    SyntaxError,
    UnknownColumn,
    UnknownDatabase,
    UnknownTable,
)
from clickhouse_http.logging import get_logger, new_query_id, reset_query_id, set_query_id
from clickhouse_http.metrics import ClientMetrics

RETRIABLE_HTTP_CODES = (500, 502, 503, 504, 429)
THROTTLED_HTTP_CODE = 429

# The server understood these and will answer the same way every time
PERMANENT_QUERY_ERRORS = (
    SyntaxError,
    StatementInvalid,
    UnknownTable,
    UnknownColumn,
    UnknownDatabase,
    AuthenticationError,
)


class Retriability(str, Enum):
    """How safe it is to send a failed request again."""

    NEVER = "never"
    # Failed before the server could have executed anything
    PRE_EXECUTION = "pre_execution"
    # The server may or may not have applied the request
    AMBIGUOUS = "ambiguous"


def classify_error(error: BaseException) -> Retriability:
    """Classify a raised error; pure, no I/O."""
    if isinstance(error, (ConnectionNotEstablished, SSLError, PoolError)):
        return Retriability.PRE_EXECUTION
    if isinstance(error, ConnectionTimeout):
        if isinstance(error.original_error, httpx.ConnectTimeout):
            return Retriability.PRE_EXECUTION
        return Retriability.AMBIGUOUS
    if isinstance(error, ConnectionError):
        return Retriability.AMBIGUOUS
    if isinstance(error, QueryError):
        if isinstance(error, PERMANENT_QUERY_ERRORS):
            return Retriability.NEVER
        try:
            status = int(error.http_status) if error.http_status else None
        except ValueError:
            status = None
        if status == THROTTLED_HTTP_CODE:
            return Retriability.PRE_EXECUTION
        if status in RETRIABLE_HTTP_CODES:
            return Retriability.AMBIGUOUS
    return Retriability.NEVER


def should_retry(kind: Retriability, idempotent: bool) -> bool:
    """Non-idempotent operations only retry failures that never reached execution."""
    if kind == Retriability.NEVER:
        return False
    if idempotent:
        return True
    return kind == Retriability.PRE_EXECUTION


class RetryPolicy:
    """Backoff parameters for one retry handler."""

    def __init__(self,
                 max_attempts: int = 3,
                 initial_backoff: float = 1.0,
                 max_backoff: float = 120.0,
                 multiplier: float = 1.6,
                 jitter: str = "equal"):
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.multiplier = multiplier
        self.jitter = jitter

    @classmethod
    def from_settings(cls, settings: ClickHouseSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            initial_backoff=settings.initial_backoff,
            max_backoff=settings.max_backoff,
            multiplier=settings.backoff_multiplier,
            jitter=settings.retry_jitter,
        )

    def calculate_delay(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """Delay after the 0-indexed ``attempt`` failed."""
        delay = min(self.max_backoff, self.initial_backoff * (self.multiplier ** attempt))

        if self.jitter == "full":
            return rand() * delay
        if self.jitter == "equal":
            return delay / 2 + rand() * (delay / 2)
        return delay


class RetryHandler:
    """Runs an operation until it succeeds, fails permanently or runs out of attempts."""

    def __init__(self,
                 policy: Optional[RetryPolicy] = None,
                 metrics: Optional[ClientMetrics] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 rand: Callable[[], float] = random.random):
        self.policy = policy or RetryPolicy()
        self.metrics = metrics
        self.sleep = sleep
        self.rand = rand
        self.logger = get_logger("retry")

    def with_retry(self, operation: Callable[[str], Any], idempotent: bool = True,
                   query_id: Optional[str] = None) -> Any:
        """Call ``operation(query_id)`` with retries.

        Every attempt gets a fresh query id unless ``query_id`` pins one for
        server-side deduplication. When attempts run out, the last error is
        raised as is.
        """
        max_attempts = self.policy.max_attempts

        for attempt in range(max_attempts):
            attempt_id = query_id or new_query_id()
            token = set_query_id(attempt_id)
            try:
                result = operation(attempt_id)
                if attempt > 0:
                    self.logger.info("Retry succeeded", attempt=attempt + 1)
                return result

            except Exception as exc:
                kind = classify_error(exc)
                if not should_retry(kind, idempotent):
                    raise

                if attempt + 1 >= max_attempts:
                    self.logger.error(
                        "All retry attempts exhausted",
                        attempt=attempt + 1,
                        max_attempts=max_attempts,
                        error=str(exc)
                    )
                    raise

                delay = self.policy.calculate_delay(attempt, self.rand)
                self.logger.warning(
                    "Retry attempt failed, waiting before next attempt",
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    delay=round(delay, 3),
                    retriability=kind.value,
                    error=str(exc)
                )
                if self.metrics is not None:
                    self.metrics.record_retry(type(exc).__name__)
                self.sleep(delay)

            finally:
                reset_query_id(token)
