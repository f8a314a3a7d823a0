"""Bounded retries with exponential backoff and jitter for storage and HTTP calls."""

import functools
import logging
from typing import Callable, Optional, TypeVar

import httpx
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from greenlight.config import settings
from greenlight.errors import PermanentError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (
    TransientError,
    OperationalError,
    DisconnectionError,
    PoolTimeoutError,
    httpx.TransportError,
    TimeoutError,
    ConnectionError,
)


def is_transient(exc: BaseException) -> bool:
    """True for failures worth another attempt (timeouts, dropped connections)."""
    return isinstance(exc, RETRYABLE_ERRORS)


def with_retry(
    fn: Callable[[], T],
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    db: Optional[Session] = None,
) -> T:
    """
    Call ``fn`` until it succeeds, retrying only transient failures.

    Args:
        fn: Zero-argument callable
        attempts: Total attempts including the first
        base_delay: Initial backoff in seconds (also the jitter range)
        max_delay: Backoff ceiling in seconds
        db: Session rolled back after every failed attempt

    Returns:
        Whatever ``fn`` returns

    Raises:
        PermanentError: If transient failures exhaust the attempt budget
        Exception: Any non-transient error, immediately
    """
    attempts = attempts or settings.STORAGE_RETRY_ATTEMPTS
    base_delay = settings.RETRY_BASE_DELAY if base_delay is None else base_delay
    max_delay = settings.RETRY_MAX_DELAY if max_delay is None else max_delay

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay, max=max_delay) + wait_random(0, base_delay),
        retry=retry_if_exception(is_transient),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=False,
    )

    try:
        for attempt in retrying:
            with attempt:
                try:
                    return fn()
                except Exception:
                    if db is not None:
                        db.rollback()
                    raise
    except RetryError as e:
        last = e.last_attempt.exception()
        logger.error(f"Giving up after {attempts} attempts: {last}")
        raise PermanentError(f"Operation failed after {attempts} attempts: {last}") from last

    raise PermanentError("Retry loop exited without a result")


def storage_retry(fn: Callable[..., T]) -> Callable[..., T]:
    """Decorator form of :func:`with_retry`; rolls back a leading ``db`` argument."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        db = kwargs.get("db")
        if db is None and args and isinstance(args[0], Session):
            db = args[0]
        return with_retry(lambda: fn(*args, **kwargs), db=db)

    return wrapper
