"""Async retry decorator with exponential backoff and optional per-attempt timeout."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from ..logger import get_logger

AsyncFn = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (must be >= 1)
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay cap in seconds
        backoff: Multiplier applied to delay after each retry
        jitter: Random jitter as fraction of delay (0.0 to 1.0)
        timeout: Seconds allowed per attempt; None waits forever
        retry_on: Exception types that trigger another attempt
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 2.0
    backoff: float = 2.0
    jitter: float = 0.0
    timeout: Optional[float] = None
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)


def _validate(config: RetryConfig) -> None:
    if config.max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    if config.base_delay < 0 or config.max_delay < 0:
        raise ValueError("delays must be >= 0")
    if config.backoff < 1.0:
        raise ValueError("backoff must be >= 1.0")
    if not (0.0 <= config.jitter <= 1.0):
        raise ValueError("jitter must be between 0.0 and 1.0")
    if config.timeout is not None and config.timeout <= 0:
        raise ValueError("timeout must be > 0")


def retry_async(config: RetryConfig, *, logger: Any = None) -> Callable[[AsyncFn], AsyncFn]:
    """Decorator that retries an async function with exponential backoff.

    Timeouts raise ``asyncio.TimeoutError``, which is retried when it is
    covered by ``retry_on`` (the default ``(Exception,)`` covers it).

    Example:
        @retry_async(RetryConfig(max_attempts=3, base_delay=0.2, timeout=5))
        async def save(context, current_step_id):
            ...
    """
    _validate(config)
    log = logger or get_logger("flowpilot.retry")

    def decorator(fn: AsyncFn) -> AsyncFn:
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            delay = config.base_delay

            while True:
                attempt += 1
                try:
                    if config.timeout is None:
                        return await fn(*args, **kwargs)
                    return await asyncio.wait_for(fn(*args, **kwargs), config.timeout)
                except config.retry_on as e:
                    name = getattr(fn, "__qualname__", repr(fn))
                    if attempt >= config.max_attempts:
                        log.error("%s failed after %d attempt(s): %r", name, attempt, e)
                        raise

                    wait = 0.0
                    if delay > 0:
                        jitter_amt = delay * config.jitter * random.random() if config.jitter else 0.0
                        wait = min(config.max_delay, delay + jitter_amt)
                    log.warning(
                        "%s attempt %d/%d failed (%r); retrying in %.2fs",
                        name, attempt, config.max_attempts, e, wait,
                    )
                    if wait:
                        await asyncio.sleep(wait)

                    delay = min(config.max_delay, delay * config.backoff)

        wrapper.__name__ = getattr(fn, "__name__", "wrapper")
        wrapper.__doc__ = getattr(fn, "__doc__", None)
        return wrapper  # type: ignore[return-value]

    return decorator


def with_retry(handler: AsyncFn, config: RetryConfig, *, logger: Any = None) -> AsyncFn:
    """Wrap an existing handler (e.g. a store's ``save``) without decorator syntax."""
    return retry_async(config, logger=logger)(handler)
