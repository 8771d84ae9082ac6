"""Bounded retry with exponential backoff.

Only failures that leave the store unchanged are retried:
- ConcurrencyConflictError: the transaction rolled back before commit
- TransientStoreError: retried only when the caller marks the operation
  as safe to repeat (reads, or writes carrying an idempotency key),
  since a timed-out write may already have committed
"""

import logging
import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from ..utils.config import get_config
from ..utils.constants import MAX_RETRY_DELAY
from .exceptions import ConcurrencyConflictError, TransientStoreError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before retry number ``attempt`` (0-based), capped, with jitter."""
    if base_delay <= 0:
        return 0.0
    delay = min(base_delay * (2 ** attempt), MAX_RETRY_DELAY)
    return delay + random.uniform(0, base_delay)


def retry_with_backoff(
    operation: Callable[[], T],
    *,
    operation_name: str,
    retry_transient: bool = False,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``operation`` and retry it on conflict (and optionally transient) errors.

    Args:
        operation: Zero-argument callable running one full transaction
        operation_name: Name used in log records
        retry_transient: Also retry TransientStoreError (only for operations
            that are safe to repeat)
        max_attempts: Total attempts including the first; defaults to config
        base_delay: Base backoff delay in seconds; defaults to config
        sleep: Sleep function (injectable for tests)

    Returns:
        The operation's return value

    Raises:
        The last error once attempts are exhausted, or any non-retryable
        error immediately
    """
    config = get_config()
    if max_attempts is None:
        max_attempts = config.retry_max_attempts
    if base_delay is None:
        base_delay = config.retry_base_delay

    retryable: Tuple[Type[Exception], ...] = (ConcurrencyConflictError,)
    if retry_transient:
        retryable = retryable + (TransientStoreError,)

    attempt = 0
    while True:
        try:
            return operation()
        except retryable as e:
            attempt += 1
            if attempt >= max_attempts:
                log_operation(
                    logger,
                    operation=operation_name,
                    outcome="retries_exhausted",
                    level=logging.WARNING,
                    attempts=attempt,
                    error=str(e),
                )
                raise
            delay = backoff_delay(attempt - 1, base_delay)
            log_operation(
                logger,
                operation=operation_name,
                outcome="retrying",
                level=logging.DEBUG,
                attempt=attempt,
                delay=delay,
                error=str(e),
            )
            sleep(delay)
