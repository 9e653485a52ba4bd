# engine_analysis/utils/retry.py
"""
Exponential backoff helpers for handling transient errors.

`compute_backoff_delay` is the single place where retry delays are computed;
the job orchestrator and the engine pool use it directly, and the
`retry_with_backoff` decorator uses it for database calls.
"""
import asyncio
import functools
import random
from typing import Any, Callable, Coroutine, Tuple, Type, TYPE_CHECKING

import structlog

from engine_analysis.utils import metrics

if TYPE_CHECKING:
    from engine_analysis.config.settings import RetryPolicyModel

logger = structlog.get_logger(__name__)

# A tuple of default exception types that are considered "transient" and worth retrying.
DEFAULT_TRANSIENT_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)


def compute_backoff_delay(
    retry_number: int,
    initial_backoff_s: float,
    max_backoff_s: float,
    multiplier: float = 2.0,
    jitter_factor: float = 0.0,
) -> float:
    """
    Returns the delay before retry number `retry_number` (1 for the first retry).

    The delay is `initial * multiplier ** (retry_number - 1)`, capped at
    `max_backoff_s`, with up to `jitter_factor` of random spread either way.
    The result is never negative and never exceeds the cap.
    """
    if retry_number < 1:
        return 0.0
    delay = min(max_backoff_s, initial_backoff_s * multiplier ** (retry_number - 1))
    if jitter_factor:
        delay += random.uniform(-delay * jitter_factor, delay * jitter_factor)
    return max(0.0, min(max_backoff_s, delay))


def delay_for_policy(policy: "RetryPolicyModel", retry_number: int) -> float:
    """`compute_backoff_delay` driven by a configured `RetryPolicyModel`."""
    return compute_backoff_delay(
        retry_number,
        initial_backoff_s=policy.initial_backoff_s,
        max_backoff_s=policy.max_backoff_s,
        multiplier=policy.multiplier,
        jitter_factor=policy.jitter_factor,
    )


def retry_with_backoff(
    attempts: int = 3,
    initial_backoff_s: float = 0.5,
    max_backoff_s: float = 5.0,
    jitter_factor: float = 0.2,
    exceptions_to_catch: Tuple[Type[Exception], ...] = DEFAULT_TRANSIENT_EXCEPTIONS,
    db_type: str = "unknown",
) -> Callable[[Callable[..., Coroutine]], Callable[..., Coroutine]]:
    """
    An async decorator to retry a function with exponential backoff and jitter.

    This decorator will re-execute the decorated asynchronous function if it
    raises one of the specified exceptions. The delay between retries doubles
    each time and includes a random "jitter" so that concurrent callers do not
    retry in lockstep.

    Args:
        attempts: The maximum number of times to try the function (including the first attempt).
        initial_backoff_s: The initial delay in seconds for the first retry.
        max_backoff_s: The maximum possible delay in seconds, to cap the backoff time.
        jitter_factor: A factor to add randomness to the delay. A value of 0.2
                       adds or subtracts up to 20% of the current backoff time.
        exceptions_to_catch: A tuple of specific exception classes that should trigger a retry.
        db_type: A label for Prometheus metrics, identifying which system is being retried.

    Returns:
        A decorated asynchronous function.
    """
    def decorator(func: Callable[..., Coroutine]) -> Callable[..., Coroutine]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions_to_catch as e:
                    metrics.DB_TRANSIENT_ERRORS_TOTAL.labels(db_type=db_type).inc()

                    if attempt == attempts:
                        logger.error(
                            "Function call failed after max attempts.",
                            function=func.__name__,
                            final_attempt=attempt,
                            total_attempts=attempts,
                            error=str(e),
                            exc_info=True,
                        )
                        raise # Re-raise the final exception after all retries fail.

                    wait_time = compute_backoff_delay(
                        attempt, initial_backoff_s, max_backoff_s, jitter_factor=jitter_factor
                    )
                    logger.warning(
                        "Caught transient error, retrying function.",
                        function=func.__name__,
                        attempt=attempt,
                        total_attempts=attempts,
                        wait_seconds=round(wait_time, 2),
                        error=str(e),
                    )
                    await asyncio.sleep(wait_time)
        return wrapper
    return decorator
