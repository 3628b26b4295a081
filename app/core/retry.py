"""
Retry utilities with exponential backoff for async functions.

The allocation engine never retries on its own; callers that can safely repeat
an operation (the payment webhook, cron jobs) wrap their call with
`async_retry` and let the exception class decide whether another attempt is
worthwhile.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

class RetryableError(Exception):
    """
    Exception that should be retried with exponential backoff.

    Used for transient failures that may succeed on retry:
    - Lost compare-and-set races on a port or subscription row
    - Database connection timeouts and temporary unavailability
    - Connection pool saturation
    """
    pass

class NonRetryableError(Exception):
    """
    Exception that should NOT be retried.

    Used for deterministic failures that won't change on retry:
    - Referenced port, subscription or order does not exist
    - Subscription already holds a port
    - Validation errors and business rule violations
    """
    pass

def async_retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0
) -> Callable[[F], F]:
    """Decorator for async functions with exponential backoff retry logic.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        base_delay: Initial delay in seconds between retries (default: 1.0)
        max_delay: Maximum delay in seconds between retries (default: 10.0)

    Returns:
        Decorated async function with retry logic

    Example:
        @async_retry(max_attempts=3, base_delay=0.5, max_delay=5.0)
        async def allocate():
            return await engine.allocate_for_subscription(subscription_id)

    Error Handling:
    - NonRetryableError: Raised immediately without retry
    - RetryableError, SQLAlchemyError, asyncio.TimeoutError: Retried up to max_attempts times
    - Anything else: Propagates immediately

    Backoff Strategy:
    - delay = base_delay * (2 ^ attempt), capped at max_delay
    - Logs a warning for each retry and an error when retries are exhausted
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            func_name = getattr(func, "__name__", repr(func))
            last_exception = None

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)

                except NonRetryableError:
                    raise

                except (RetryableError, SQLAlchemyError, asyncio.TimeoutError) as e:
                    last_exception = e
                    if attempt < max_attempts - 1:
                        delay = min(base_delay * (2 ** attempt), max_delay)
                        logger.warning(
                            f"Retry attempt {attempt + 1}/{max_attempts} for {func_name}. "
                            f"Error: {str(e)}. Waiting {delay:.2f}s..."
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"All {max_attempts} attempts failed for {func_name}. "
                            f"Final error: {str(e)}"
                        )

            raise last_exception

        return wrapper
    return decorator
