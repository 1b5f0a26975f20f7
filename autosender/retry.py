"""
Exponential backoff with jitter around any fallible callable.

    result = with_retry(lambda: session.get(url), RetryConfig(max_retries=2))
    if not result.success:
        raise result.error
"""

import functools
import logging
import random
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    jitter_factor: float = 0.1


DEFAULT_RETRY_CONFIG = RetryConfig()


@dataclass
class RetryResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    delays: List[int] = field(default_factory=list)


def calculate_delay(attempt: int, config: RetryConfig, rng: Callable[[], float] = random.random) -> int:
    """Delay in ms before retrying after 0-indexed attempt `attempt`."""
    capped = min(config.base_delay_ms * (2 ** attempt), config.max_delay_ms)
    jitter = capped * config.jitter_factor * (rng() * 2 - 1)
    return max(0, round(capped + jitter))


def with_retry(
    operation: Callable[[], T],
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    log: Optional[logging.Logger] = None,
    sleep: Optional[Callable[[float], Any]] = None,
    rng: Callable[[], float] = random.random,
) -> RetryResult[T]:
    log = log or logger
    sleep = sleep or time.sleep
    delays: List[int] = []
    last_error: Optional[BaseException] = None

    for attempt in range(config.max_retries + 1):
        try:
            data = operation()
            return RetryResult(success=True, data=data, attempts=attempt + 1, delays=delays)
        except Exception as e:
            last_error = e
            if attempt < config.max_retries:
                delay = calculate_delay(attempt, config, rng)
                delays.append(delay)
                log.warning(
                    "Attempt %d failed, retrying in %dms: %s", attempt + 1, delay, e
                )
                sleep(delay / 1000.0)
            else:
                log.warning("Attempt %d failed, giving up: %s", attempt + 1, e)

    return RetryResult(
        success=False,
        error=last_error,
        attempts=config.max_retries + 1,
        delays=delays,
    )


def retry(config: RetryConfig = DEFAULT_RETRY_CONFIG, **overrides):
    """Decorator form of with_retry: returns the data or raises the last error."""
    full = replace(config, **overrides) if overrides else config

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            result = with_retry(
                lambda: fn(*args, **kwargs),
                full,
                log=logging.getLogger(fn.__module__),
            )
            if result.success:
                return result.data
            raise result.error

        return wrapper

    return decorator
