"""Retry decorator for provider calls that fail for transient reasons."""

import asyncio
import logging
from functools import wraps
from typing import Any, Callable

from integration.exceptions import ProviderTransientException

log = logging.getLogger(__name__)


def retry_on_transient_failure(
    max_attempts: int = 3,
    initial_delay: float = 2.0,
    backoff_factor: float = 2.0,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Retry decorator for capacity and throttling errors.

    Only ProviderTransientException is retried; validation, permanent provider errors,
    timeouts and command failures propagate on the first occurrence.

    Args:
        max_attempts: Maximum number of attempts (including initial attempt)
        initial_delay: Delay in seconds before the first retry
        backoff_factor: Multiplier for delay between retries

    Returns:
        Decorated async function with retry logic

    Example:
        @retry_on_transient_failure(max_attempts=3, initial_delay=2.0)
        async def create_instance(self, config: Ec2InstanceConfig) -> Ec2InstanceDto:
            return await self.ec2.create_and_wait_for_instance(config)
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            delay = initial_delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except ProviderTransientException as e:
                    if attempt == max_attempts:
                        log.warning(
                            "Transient provider failure - max retries (%d) exhausted for %s: %s",
                            max_attempts,
                            func.__name__,
                            str(e),
                        )
                        raise

                    log.info(
                        "Transient provider failure (attempt %d/%d) for %s - retrying in %.2fs: %s",
                        attempt,
                        max_attempts,
                        func.__name__,
                        delay,
                        str(e),
                    )

                    await asyncio.sleep(delay)
                    delay *= backoff_factor

        return wrapper

    return decorator
