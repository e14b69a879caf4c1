"""Async retry decorator with exponential backoff."""

import asyncio
import logging
from functools import wraps
from typing import TypeVar, Callable, Any, Optional

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, backoff_base: float, max_delay: Optional[float] = None) -> float:
    """Delay before retrying after the given (1-based) failed attempt."""
    delay = backoff_base * (2 ** (attempt - 1))
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


def async_retry(
    max_attempts: int = 3,
    backoff_base: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    retry_if: Optional[Callable[[BaseException], bool]] = None,
    delay_for: Optional[Callable[[BaseException, int], Optional[float]]] = None,
    max_delay: Optional[float] = None,
) -> Callable:
    """
    Decorator that retries an async function on exception.

    Uses exponential backoff: sleeps backoff_base * 2^(attempt-1) seconds
    between retries (i.e. backoff_base after first failure,
    backoff_base*2 after second, etc.).

    Args:
        max_attempts: Total number of attempts (1 = no retry).
        backoff_base: Base delay in seconds for the first retry.
        retry_on: Exception types that are eligible for a retry. Anything
            else propagates immediately.
        retry_if: Optional predicate; returning False stops retrying.
        delay_for: Optional hook returning a delay hint for an exception
            (e.g. a provider's Retry-After). None falls back to backoff.
        max_delay: Upper bound on any single sleep.
    """
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_exception: Exception | None = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return await fn(*args, **kwargs)
                except retry_on as exc:
                    last_exception = exc
                    if retry_if is not None and not retry_if(exc):
                        raise
                    if attempt < max_attempts:
                        hint = delay_for(exc, attempt) if delay_for else None
                        if hint is None:
                            delay = backoff_delay(attempt, backoff_base, max_delay)
                        else:
                            delay = min(hint, max_delay) if max_delay is not None else hint
                        logger.warning(
                            f"{fn.__name__} attempt {attempt}/{max_attempts} "
                            f"failed: {exc}. Retrying in {delay:.1f}s..."
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"{fn.__name__} failed after {max_attempts} attempts: {exc}"
                        )
            raise last_exception  # type: ignore[misc]
        return wrapper
    return decorator
