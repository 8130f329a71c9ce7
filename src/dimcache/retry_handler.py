"""Retry logic with exponential backoff for transient upstream failures.

This module provides a decorator for retrying operations that may fail due to
transient errors (network resets, timeouts, upstream 5xx responses).

Design Philosophy:
- Ruthless simplicity: Single decorator for all retry needs
- Configurable: Max attempts, delays, jitter can be tuned
- Observable: Clear logging of retry attempts

Security:
- No credential leakage in logs (messages pass through LogSanitizer)
- Safe default limits

Usage:
    @retry_with_exponential_backoff(max_attempts=5, initial_delay=2.0)
    def post_lookup():
        return requests.post(url, data=form, timeout=30)
"""

import functools
import logging
import random
import time
from collections.abc import Callable
from typing import Any, TypeVar

import requests

from dimcache.log_sanitizer import LogSanitizer

logger = logging.getLogger(__name__)

# Type variable for generic function wrapping
F = TypeVar("F", bound=Callable[..., Any])

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class RetryableHTTPError(Exception):
    """Raised for an upstream HTTP response worth retrying (5xx, 408, 429)."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"Upstream returned HTTP {status_code}: {body[:200]}")
        self.status_code = status_code
        self.body = body


def retry_with_exponential_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
) -> Callable[[F], F]:
    """Decorator for retrying operations with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        initial_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay between retries in seconds (default: 30.0)
        jitter: Add random jitter to delays to prevent thundering herd (default: True)
        retryable_exceptions: Tuple of exception types to retry
            (default: network errors and retryable HTTP statuses)

    Returns:
        Decorated function that will retry on transient failures

    Example:
        >>> @retry_with_exponential_backoff(max_attempts=3)
        ... def call_upstream():
        ...     return session.post(url, data=form)
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    if retryable_exceptions is None:
        retryable_exceptions = default_retryable_exceptions()

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            delay = initial_delay

            for attempt in range(1, max_attempts + 1):
                try:
                    result = func(*args, **kwargs)

                    if attempt > 1:
                        logger.info(
                            f"{func.__name__} succeeded on attempt {attempt}/{max_attempts}"
                        )

                    return result

                except retryable_exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(
                            f"{func.__name__} failed after {max_attempts} attempts: "
                            f"{LogSanitizer.sanitize_exception(e)}"
                        )
                        raise

                    actual_delay = delay
                    if jitter:
                        # ±25% of delay
                        jitter_amount = delay * 0.25
                        actual_delay = delay + random.uniform(-jitter_amount, jitter_amount)

                    actual_delay = min(actual_delay, max_delay)

                    logger.warning(
                        f"{func.__name__} failed on attempt {attempt}/{max_attempts}, "
                        f"retrying in {actual_delay:.2f}s: {LogSanitizer.sanitize_exception(e)}"
                    )

                    time.sleep(actual_delay)
                    delay *= 2

            raise RuntimeError(f"{func.__name__} failed with unknown error")

        return wrapper  # type: ignore[return-value]

    return decorator


def default_retryable_exceptions() -> tuple[type[Exception], ...]:
    """Exception types that indicate a transient upstream failure.

    Returns:
        Tuple of exception types that should trigger retries
    """
    return (
        RetryableHTTPError,
        requests.ConnectionError,
        requests.Timeout,
        ConnectionError,
        TimeoutError,
    )


def should_retry_http_error(status_code: int) -> bool:
    """Determine if HTTP status code should trigger retry.

    Args:
        status_code: HTTP status code from the upstream response

    Returns:
        True for 408, 429, 500, 502, 503 and 504
    """
    return status_code in RETRYABLE_STATUS_CODES


__all__ = [
    "RETRYABLE_STATUS_CODES",
    "RetryableHTTPError",
    "default_retryable_exceptions",
    "retry_with_exponential_backoff",
    "should_retry_http_error",
]
