"""
Recovery Strategies

Retry handling for venue HTTP calls. Only edge-proxy rejections and
transport failures are retried; on-chain steps are never routed through here.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Coroutine, Dict, Optional, TypeVar

import httpx

from .errors import EdgeProxyBlocked, ErrorCategory, RecoverableError, UnrecoverableError

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 5
    initial_delay_seconds: float = 1.0

    # Per-category base delay, multiplied by the attempt number
    category_delays: Dict[ErrorCategory, float] = field(
        default_factory=lambda: {
            ErrorCategory.EDGE_PROXY: 1.0,
            ErrorCategory.NETWORK: 0.5,
        }
    )

    def get_delay(self, attempt: int, category: Optional[ErrorCategory] = None) -> float:
        """Linear backoff: base delay times the 1-based attempt number."""
        base = self.category_delays.get(category, self.initial_delay_seconds) if category else self.initial_delay_seconds
        return base * (attempt + 1)


class RetryStrategy:
    """
    Retry strategy with linear backoff.

    Retries recoverable errors and transport failures up to max_attempts
    times; anything else propagates on the first failure.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.config = config or RetryConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep or asyncio.sleep

    async def execute(
        self,
        operation: Callable[[], Coroutine[Any, Any, T]],
        context: Optional[Dict[str, Any]] = None,
    ) -> T:
        last_error: Optional[Exception] = None
        label = (context or {}).get("operation", "operation")

        for attempt in range(self.config.max_attempts):
            try:
                return await operation()
            except Exception as e:
                last_error = e

                if not self.should_retry(e, attempt):
                    raise

                delay = self._get_delay(e, attempt)
                self.logger.warning(
                    f"{label} attempt {attempt + 1}/{self.config.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        raise last_error or RuntimeError("All retry attempts exhausted")

    def should_retry(self, error: Exception, attempt: int) -> bool:
        if attempt >= self.config.max_attempts - 1:
            return False

        if isinstance(error, UnrecoverableError):
            return False

        if isinstance(error, (RecoverableError, httpx.TransportError)):
            return True

        return False

    def _get_delay(self, error: Exception, attempt: int) -> float:
        if isinstance(error, RecoverableError) and error.retry_after:
            return error.retry_after

        if isinstance(error, EdgeProxyBlocked):
            return self.config.get_delay(attempt, ErrorCategory.EDGE_PROXY)

        if isinstance(error, httpx.TransportError):
            return self.config.get_delay(attempt, ErrorCategory.NETWORK)

        return self.config.get_delay(attempt)
