"""Retry policy: turn a failure into the next scheduled step.

Rules (fixed):

    unauthorized, duplicate-write, name-conflict  -> drop immediately
    forced-clear                                  -> dead-letter immediately
    store-transient                               -> fixed delay, never dead-letters
    everything else                               -> 2**retry_count seconds,
                                                     dead-letter once retry_count
                                                     reaches max_consecutive_retries

``retry_count`` restarts at 0 whenever the category differs from the previous
attempt and increments by one while it repeats.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from rpde_proxy.feeds.errors import (
    ErrorCategory,
    FeedLifecycleError,
    StoreTransientError,
    StoreWriteError,
)

if TYPE_CHECKING:
    from rpde_proxy.main.config import Settings

_DROP_CATEGORIES = frozenset(
    {
        ErrorCategory.UNAUTHORIZED,
        ErrorCategory.DUPLICATE_WRITE,
        ErrorCategory.NAME_CONFLICT,
    }
)

# serialization_failure, deadlock_detected, lock_not_available, too_many_connections,
# query_canceled, admin_shutdown, cannot_connect_now
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03", "53300", "57014", "57P01", "57P03"})


class RetryDecision(BaseModel):
    """Outcome of classifying one failed attempt. Travels in ``FeedState.retryState``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    category: ErrorCategory
    retry_count: int = 0
    delay_seconds: int = 0
    dead_letter: bool = False
    drop_immediately: bool = False


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def classify_store_error(exc: SQLAlchemyError, retry_after_seconds: int | None = None) -> FeedLifecycleError:
    """Map a SQLAlchemy failure onto the store categories."""
    if isinstance(exc, PoolTimeoutError):
        return StoreTransientError(f"Store connection pool exhausted: {exc}", retry_after_seconds)
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated or _sqlstate(exc) in TRANSIENT_SQLSTATES:
            return StoreTransientError(f"Store throttled: {exc}", retry_after_seconds)
    return StoreWriteError(f"Store write failed: {exc}")


def classify(exc: BaseException) -> ErrorCategory:
    """Map a raw failure onto the closed set of error categories."""
    if isinstance(exc, FeedLifecycleError):
        return exc.category
    if isinstance(exc, httpx.HTTPError):
        return ErrorCategory.FETCH_ERROR
    if isinstance(exc, (ValidationError, json.JSONDecodeError, UnicodeDecodeError)):
        return ErrorCategory.INVALID_PAGE
    if isinstance(exc, SQLAlchemyError):
        return classify_store_error(exc).category
    return ErrorCategory.UNEXPECTED


def decide(
    category: ErrorCategory,
    previous: RetryDecision | None,
    settings: "Settings",
) -> RetryDecision:
    """Compute the recovery policy for ``category`` given the previous attempt."""
    if previous is not None and previous.category == category:
        retry_count = previous.retry_count + 1
    else:
        retry_count = 0

    if category in _DROP_CATEGORIES:
        return RetryDecision(category=category, retry_count=retry_count, drop_immediately=True)

    if category == ErrorCategory.FORCED_CLEAR:
        return RetryDecision(category=category, retry_count=retry_count, dead_letter=True)

    if category == ErrorCategory.STORE_TRANSIENT:
        return RetryDecision(
            category=category,
            retry_count=retry_count,
            delay_seconds=settings.store_retry_after_seconds,
        )

    if retry_count >= settings.max_consecutive_retries:
        return RetryDecision(category=category, retry_count=retry_count, dead_letter=True)

    return RetryDecision(
        category=category,
        retry_count=retry_count,
        delay_seconds=2**retry_count,
    )


def decide_for_exception(
    exc: BaseException,
    previous: RetryDecision | None,
    settings: "Settings",
) -> RetryDecision:
    decision = decide(classify(exc), previous, settings)
    if isinstance(exc, StoreTransientError) and exc.retry_after_seconds is not None:
        decision.delay_seconds = exc.retry_after_seconds
    return decision


def purge_retry_delay(purge_retries: int, settings: "Settings") -> int:
    """Exponential backoff for the purge stage, capped."""
    return min(2**purge_retries, settings.purge_max_retry_delay_seconds)
