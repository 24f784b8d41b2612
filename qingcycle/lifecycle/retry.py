"""
Retry policy for remote calls.

Wraps one remote call and retries it while the backend rejects it as busy,
backing off exponentially between attempts. Permanent errors propagate
untouched.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, Field

from ..clients.base import is_transient_busy
from .deadline import Deadline
from .errors import RetryExhaustedError

T = TypeVar("T")

MIN_BACKOFF_SECONDS = 1.0


class RetryConfig(BaseModel):
    """Bounds for retrying a single remote call."""

    max_attempts: int = Field(default=5, ge=1)
    base_delay: float = Field(default=MIN_BACKOFF_SECONDS, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=30.0, ge=0)

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait after failed ``attempt`` (1-based)."""
        delay = self.base_delay * self.backoff_factor ** (attempt - 1)
        return max(self.base_delay, min(delay, self.max_delay))


class RetryPolicy:
    """Bounded retry on transient busy errors."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        classifier: Callable[..., bool] = is_transient_busy,
    ):
        self.config = config or RetryConfig()
        self.classifier = classifier
        self.logger = logging.getLogger(self.__class__.__name__)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        idempotent: bool = True,
        deadline: Optional[Deadline] = None,
        description: str = "remote call",
    ) -> T:
        """
        Invoke ``operation`` until it succeeds or fails permanently.

        Args:
            operation: Zero-argument coroutine factory issuing the call
            idempotent: Whether an ambiguous failure may be repeated
            deadline: Overall deadline bounding the backoff sleeps
            description: Name used in log records and errors

        Returns:
            Whatever ``operation`` returns

        Raises:
            RetryExhaustedError: still transient after ``max_attempts``
        """
        deadline = deadline or Deadline()
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self.classifier(e, idempotent):
                    raise
                last_error = e

            if attempt == self.config.max_attempts:
                break

            delay = self.config.delay_for(attempt)
            self.logger.warning(
                "Remote call rejected as busy, retrying",
                extra={
                    "operation": description,
                    "phase": "busy_retry",
                    "attempt": attempt,
                    "max_attempts": self.config.max_attempts,
                    "retry_delay": delay,
                    "error_message": str(last_error),
                },
            )
            await deadline.sleep(delay, description)

        assert last_error is not None
        self.logger.error(
            "Remote call still busy after all retry attempts",
            extra={
                "operation": description,
                "phase": "retry_exhausted",
                "total_attempts": self.config.max_attempts,
                "final_error": str(last_error),
            },
        )
        raise RetryExhaustedError(
            last_error, self.config.max_attempts, phase=description
        ) from last_error
