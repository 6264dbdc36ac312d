"""Retry policy for embedding provider calls.

Retrying is opt-in: the default ``RetryConfig`` makes a single attempt, so a
provider failure surfaces immediately to the caller (search falls back,
reindexing reports the record as failed). Operators raise
``talent_embedding_retry_attempts`` to enable exponential backoff.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Tuple, Type

import structlog

from ..common.errors import ProviderUnavailableError

logger = structlog.get_logger("embedding.retry")


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 1,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Tuple[Type[BaseException], ...] = (ProviderUnavailableError,),
        non_retryable_exceptions: Tuple[Type[BaseException], ...] = ()
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions
        self.non_retryable_exceptions = non_retryable_exceptions


class RetryHandler:
    """Handles retry logic with exponential backoff."""

    def __init__(self, config: RetryConfig):
        self.config = config

    async def execute_with_retry(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        operation_name: str = "unknown",
        **kwargs: Any
    ) -> Any:
        """Await ``func`` until it succeeds or attempts run out."""
        for attempt in range(self.config.max_attempts):
            try:
                result = await func(*args, **kwargs)
            except self.config.non_retryable_exceptions:
                raise
            except self.config.retryable_exceptions as e:
                if attempt == self.config.max_attempts - 1:
                    if self.config.max_attempts > 1:
                        logger.error(
                            "Operation failed after all retries",
                            operation=operation_name,
                            attempts=self.config.max_attempts,
                            error=str(e)
                        )
                    raise

                delay = self._calculate_delay(attempt)
                logger.warning(
                    "Operation failed, retrying",
                    operation=operation_name,
                    attempt=attempt + 1,
                    total_attempts=self.config.max_attempts,
                    delay_seconds=delay,
                    error=str(e)
                )
                await asyncio.sleep(delay)
                continue

            if attempt > 0:
                logger.info(
                    "Operation succeeded after retry",
                    operation=operation_name,
                    attempt=attempt + 1
                )
            return result

        raise RuntimeError("Retry loop exited without a result")

    def _calculate_delay(self, attempt: int) -> float:
        """Calculate delay for the given attempt."""
        delay = self.config.base_delay * (self.config.exponential_base ** attempt)
        delay = min(delay, self.config.max_delay)

        if self.config.jitter:
            jitter_range = delay * 0.1
            delay += random.uniform(-jitter_range, jitter_range)

        return max(delay, 0.0)
